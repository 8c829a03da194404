import pytest

from autoseo.hooks import PostCommitHooks, make_auto_publish_hook
from autoseo.models import ArticleStatus
from autoseo.services.articles_service import create_article, mark_published, update_article
from autoseo.services.integrations_service import create_or_update_integration
from autoseo.state import INITIATED_BY_SYSTEM
from autoseo.storage import init_db

PLUGIN_PUBLISH = "/wp-json/rankyak/v1/publish"


@pytest.fixture
def hooks(db_path, registry, config, transport):
    hooks = PostCommitHooks(max_workers=2)
    hooks.register(
        "auto_publish",
        make_auto_publish_hook(lambda: init_db(db_path), registry, config, http=transport),
    )
    yield hooks
    hooks.shutdown()


@pytest.fixture
def article(conn, project):
    return create_article(conn, project.id, {"title": "Best CRM", "content": "# Best CRM\n\nBody."})


def _publish(conn, article, hooks, **kwargs):
    return update_article(conn, article.id, {"status": "published"}, hooks=hooks, hook_timeout=5, **kwargs)


def test_wordpress_without_url_reports_missing_fields(conn, project, article, hooks, transport):
    create_or_update_integration(conn, project.id, "wordpress", {})

    update = _publish(conn, article, hooks)

    assert update.article.status is ArticleStatus.PUBLISHED
    assert update.article.published_at is not None
    (outcome,) = update.hook_outcomes
    assert outcome.ok is True
    assert outcome.result["platform"] == "wordpress"
    assert outcome.result["has_integration_key"] is True
    assert outcome.result["has_wordpress_url"] is False
    assert outcome.result["missing_fields"] == ["url"]
    assert outcome.result["published"] is False
    assert outcome.result["error_code"] == "ValidationFailed"
    assert transport.calls == []


def test_user_publish_pushes_to_wordpress(conn, article, wordpress, hooks, transport):
    transport.add("POST", PLUGIN_PUBLISH, {"post_id": 42, "url": "https://blog.acme.test/best-crm"})

    update = _publish(conn, article, hooks)

    (outcome,) = update.hook_outcomes
    assert outcome.result["published"] is True
    assert outcome.result["has_wordpress_url"] is True
    assert outcome.result["post_id"] == "42"
    assert len(transport.matching("POST", PLUGIN_PUBLISH)) == 1


def test_system_initiated_publish_does_not_push(conn, article, wordpress, hooks, transport):
    update = _publish(conn, article, hooks, initiated_by=INITIATED_BY_SYSTEM)

    assert update.article.status is ArticleStatus.PUBLISHED
    assert update.hook_outcomes[0].result is None
    assert transport.calls == []


def test_mark_published_skips_hooks(conn, article, wordpress, transport):
    change = mark_published(conn, article.id)

    assert change.applied is True
    assert transport.calls == []


def test_no_integration_is_reported(conn, article, hooks):
    update = _publish(conn, article, hooks)

    (outcome,) = update.hook_outcomes
    assert outcome.ok is True
    assert outcome.result["published"] is False
    assert outcome.result["error_code"] == "NoIntegrationConfigured"


def test_crashing_hook_keeps_the_edit(conn, article, hooks):
    def broken(event):
        raise RuntimeError("boom")

    hooks.register("broken", broken)

    update = update_article(
        conn,
        article.id,
        {"status": "published", "title": "Best CRM Tools"},
        hooks=hooks,
        hook_timeout=5,
    )

    assert update.article.status is ArticleStatus.PUBLISHED
    assert update.article.title == "Best CRM Tools"
    broken_outcome = [outcome for outcome in update.hook_outcomes if outcome.hook == "broken"][0]
    assert broken_outcome.ok is False
    assert broken_outcome.error_code == "InternalError"
    assert broken_outcome.error == "boom"


def test_republishing_is_not_a_transition(conn, article, wordpress, hooks, transport):
    transport.add("POST", PLUGIN_PUBLISH, {"post_id": 42})
    _publish(conn, article, hooks)

    again = _publish(conn, article, hooks)

    assert again.change.applied is False
    assert again.hook_outcomes == []
    assert len(transport.matching("POST", PLUGIN_PUBLISH)) == 1


def test_pending_hooks_without_timeout(conn, article, hooks):
    update = update_article(conn, article.id, {"status": "published"}, hooks=hooks)

    outcomes = [future.result(timeout=5) for future in update.pending_hooks]

    assert outcomes[0].result["error_code"] == "NoIntegrationConfigured"
