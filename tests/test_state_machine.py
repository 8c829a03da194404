import itertools

import pytest

from autoseo.errors import AlreadyUsed, InvalidTransition, ValidationFailed
from autoseo.models import ArticleStatus, KeywordStatus
from autoseo.services.articles_service import create_article, mark_published, require_article, update_article
from autoseo.services.keywords_service import create_keyword, plan_keyword, require_keyword
from autoseo.state import (
    ARTICLE_TRANSITIONS,
    INITIATED_BY_SYSTEM,
    INITIATED_BY_USER,
    KEYWORD_TRANSITIONS,
    apply_keyword_transition,
    check_article_transition,
    check_keyword_transition,
    should_auto_publish,
)

WHEN = "2026-03-10T09:00:00+00:00"


@pytest.mark.parametrize("current,target", itertools.product(KeywordStatus, KeywordStatus))
def test_keyword_transition_table(current, target):
    if current is KeywordStatus.USED:
        result = check_keyword_transition(current, target, WHEN)
        assert not result.applied
        assert result.reason == "keyword_used"
        assert result.to_status is KeywordStatus.USED
    elif current is KeywordStatus.PLANNED and target is KeywordStatus.PLANNED:
        result = check_keyword_transition(current, target, WHEN)
        assert result.reason == "replanned"
        assert result.planned_date == WHEN
    elif current is target:
        assert check_keyword_transition(current, target, WHEN).reason == "unchanged"
    elif target in KEYWORD_TRANSITIONS[current]:
        result = check_keyword_transition(current, target, WHEN)
        assert result.applied
        assert result.to_status is target
    else:
        with pytest.raises(InvalidTransition):
            check_keyword_transition(current, target, WHEN)


def test_planning_requires_a_date():
    with pytest.raises(ValidationFailed):
        check_keyword_transition(KeywordStatus.UNPLANNED, KeywordStatus.PLANNED, None)


def test_planned_date_is_normalised_to_utc():
    result = check_keyword_transition("unplanned", "planned", "2026-03-10T11:00:00+02:00")
    assert result.planned_date == WHEN


@pytest.mark.parametrize("current,target", itertools.product(ArticleStatus, ArticleStatus))
def test_article_transition_table(current, target):
    if current is target:
        assert not check_article_transition(current, target).applied
    elif target in ARTICLE_TRANSITIONS[current]:
        change = check_article_transition(current, target, scheduled_for=WHEN)
        assert change.applied
        if target is ArticleStatus.PUBLISHED:
            assert change.published_at is not None
            assert change.scheduled_for is None
        else:
            assert change.scheduled_for == WHEN
            assert change.published_at is None
    else:
        with pytest.raises(InvalidTransition):
            check_article_transition(current, target, scheduled_for=WHEN)


def test_scheduling_requires_a_date():
    with pytest.raises(ValidationFailed):
        check_article_transition(ArticleStatus.DRAFT, ArticleStatus.SCHEDULED)


def test_unknown_status_is_rejected():
    with pytest.raises(ValidationFailed):
        check_article_transition("draft", "archived")


def test_should_auto_publish_only_for_user_publishes():
    assert should_auto_publish("draft", "published", INITIATED_BY_USER)
    assert should_auto_publish("scheduled", "published", INITIATED_BY_USER)
    assert not should_auto_publish("draft", "published", INITIATED_BY_SYSTEM)
    assert not should_auto_publish("draft", "scheduled", INITIATED_BY_USER)
    assert not should_auto_publish("published", "published", INITIATED_BY_USER)


def test_used_keyword_never_regresses(conn, project):
    keyword = create_keyword(conn, project.id, {"keyword": "best crm"})
    plan_keyword(conn, keyword.id, WHEN)
    assert apply_keyword_transition(conn, keyword.id, KeywordStatus.USED).applied

    with pytest.raises(AlreadyUsed):
        plan_keyword(conn, keyword.id, WHEN)
    result = apply_keyword_transition(conn, keyword.id, KeywordStatus.UNPLANNED)
    assert not result.applied
    assert require_keyword(conn, keyword.id).status is KeywordStatus.USED


def test_published_at_is_set_exactly_when_published(conn, project):
    article = create_article(conn, project.id, {"title": "Best CRM", "content": "# Best CRM"})
    assert article.published_at is None

    update_article(conn, article.id, {"status": "scheduled", "scheduled_for": WHEN})
    scheduled = require_article(conn, article.id)
    assert scheduled.status is ArticleStatus.SCHEDULED
    assert scheduled.scheduled_for == WHEN
    assert scheduled.published_at is None

    change = mark_published(conn, article.id)
    published = require_article(conn, article.id)
    assert change.applied
    assert published.status is ArticleStatus.PUBLISHED
    assert published.published_at == change.published_at
    assert published.scheduled_for is None

    with pytest.raises(InvalidTransition):
        update_article(conn, article.id, {"status": "draft"})
    assert not mark_published(conn, article.id).applied
    assert require_article(conn, article.id).published_at == change.published_at


def test_rescheduling_keeps_status(conn, project):
    article = create_article(conn, project.id, {"title": "Best CRM", "content": ""})
    update_article(conn, article.id, {"status": "scheduled", "scheduled_for": WHEN})

    update_article(conn, article.id, {"scheduled_for": "2026-03-12T09:00:00+00:00"})

    rescheduled = require_article(conn, article.id)
    assert rescheduled.status is ArticleStatus.SCHEDULED
    assert rescheduled.scheduled_for == "2026-03-12T09:00:00+00:00"


def test_rejected_transition_keeps_field_edits_unsaved(conn, project):
    article = create_article(conn, project.id, {"title": "Best CRM", "content": "# Best CRM"})

    with pytest.raises(ValidationFailed):
        update_article(conn, article.id, {"title": "New title", "status": "scheduled"})
    mark_published(conn, article.id)
    with pytest.raises(InvalidTransition):
        update_article(conn, article.id, {"content": "# Changed", "status": "draft"})

    stored = require_article(conn, article.id)
    assert stored.title == "Best CRM"
    assert stored.content == "# Best CRM"


def test_field_edits_and_status_commit_together(conn, project):
    article = create_article(conn, project.id, {"title": "Best CRM", "content": ""})

    update = update_article(conn, article.id, {"title": "CRM Guide", "status": "scheduled", "scheduled_for": WHEN})

    assert update.change.applied
    stored = require_article(conn, article.id)
    assert stored.title == "CRM Guide"
    assert stored.status is ArticleStatus.SCHEDULED
