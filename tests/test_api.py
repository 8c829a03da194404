import pytest
from fastapi.testclient import TestClient

from autoseo.api import app

PLUGIN_PUBLISH = "/wp-json/rankyak/v1/publish"


@pytest.fixture
def client(db_path, transport):
    app.state.registry = None
    app.state.hooks = None
    app.state.http = transport
    yield TestClient(app)
    hooks = app.state.hooks
    if hooks is not None:
        hooks.shutdown()
    app.state.registry = None
    app.state.hooks = None
    app.state.http = None


def _project(client, **fields):
    body = {"name": "Acme", "website_url": "https://acme.test", "onboarding_complete": True}
    body.update(fields)
    response = client.post("/projects", json=body)
    assert response.status_code == 200
    return response.json()


def _article(client, project_id):
    response = client.post(
        f"/projects/{project_id}/articles",
        json={"title": "Best CRM", "content": "# Best CRM\n\nA CRM keeps customers in one place."},
    )
    assert response.status_code == 200
    return response.json()


def _wordpress(client, project_id, **credentials):
    response = client.post(
        f"/projects/{project_id}/integrations",
        json={"platform": "wordpress", "credentials": credentials},
    )
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_runtime_config_roundtrip(client):
    config = client.get("/admin/config/runtime").json()["config"]
    config["hooks"]["auto_publish_timeout_seconds"] = 10

    assert client.put("/admin/config/runtime", json={"config": config}).status_code == 200
    assert client.get("/admin/config/runtime").json()["config"]["hooks"]["auto_publish_timeout_seconds"] == 10
    assert client.put("/admin/config/runtime", json={"config": {"app": {}}}).status_code == 400


def test_project_keyword_and_plan_flow(client):
    project = _project(client)
    for text in ("best crm", "crm pricing"):
        assert client.post(f"/projects/{project['id']}/keywords", json={"keyword": text}).status_code == 200

    duplicate = client.post(f"/projects/{project['id']}/keywords", json={"keyword": "best crm"})
    assert duplicate.status_code == 400
    assert duplicate.json()["code"] == "ValidationFailed"

    plan = client.post(
        "/keywords/plan", json={"project_id": project["id"], "start": "2026-04-01T00:00:00+00:00"}
    )
    assert [item["planned_date"] for item in plan.json()["planned"]] == [
        "2026-04-01T09:00:00+00:00",
        "2026-04-02T09:00:00+00:00",
    ]
    listed = client.get(f"/projects/{project['id']}/keywords", params={"status": "planned"}).json()
    assert len(listed) == 2


def test_unknown_project_is_404(client):
    response = client.get("/projects/missing")
    assert response.status_code == 404
    assert response.json() == {"error": "project missing not found", "code": "NotFound"}


def test_article_crud_and_invalid_transition(client):
    project = _project(client)
    article = _article(client, project["id"])
    assert article["status"] == "draft"
    assert article["seo_score"] > 0

    scheduled = client.patch(
        f"/articles/{article['id']}",
        json={"status": "scheduled", "scheduled_for": "2030-01-01T09:00:00Z"},
    )
    assert scheduled.status_code == 200
    assert scheduled.json()["article"]["scheduled_for"] == "2030-01-01T09:00:00+00:00"
    assert scheduled.json()["auto_publish"] is None

    backwards = client.patch(f"/articles/{article['id']}", json={"status": "draft"})
    assert backwards.status_code == 409
    assert backwards.json()["code"] == "InvalidTransition"

    assert client.delete(f"/articles/{article['id']}").status_code == 200
    assert client.get(f"/articles/{article['id']}").status_code == 404


def test_user_publish_reports_auto_publish_diagnostic(client, transport):
    project = _project(client)
    _wordpress(client, project["id"])
    article = _article(client, project["id"])

    response = client.patch(f"/articles/{article['id']}", json={"status": "published"})

    assert response.status_code == 200
    body = response.json()
    assert body["article"]["status"] == "published"
    assert body["article"]["published_at"]
    assert body["auto_publish"]["platform"] == "wordpress"
    assert body["auto_publish"]["has_integration_key"] is True
    assert body["auto_publish"]["has_wordpress_url"] is False
    assert body["auto_publish"]["missing_fields"] == ["url"]
    assert body["auto_publish"]["published"] is False
    assert transport.calls == []


def test_manual_publish(client, transport):
    project = _project(client)
    integration = _wordpress(client, project["id"], url="https://blog.acme.test")
    article = _article(client, project["id"])
    transport.add("POST", PLUGIN_PUBLISH, {"post_id": 42, "url": "https://blog.acme.test/best-crm"})

    response = client.post(f"/articles/{article['id']}/publish", json={"platform": "wordpress"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["integration_id"] == integration["id"]
    assert client.get(f"/articles/{article['id']}").json()["status"] == "published"


def test_background_publish_enqueues_job(client):
    project = _project(client)
    article = _article(client, project["id"])

    response = client.post(f"/articles/{article['id']}/publish", json={"background": True})

    job_id = response.json()["job_id"]
    jobs = client.get("/jobs", params={"queue": "publishing"}).json()
    assert [job["id"] for job in jobs] == [job_id]
    assert jobs[0]["payload"] == {"article_id": article["id"], "project_id": project["id"]}


def test_integration_view_is_redacted(client):
    project = _project(client)
    created = _wordpress(client, project["id"], url="https://blog.acme.test", password="app-password")

    assert created["credentials"] == {"url": "https://blog.acme.test", "password": "...word"}
    assert created["integration_key"].startswith("rk_")
    listed = client.get(f"/projects/{project['id']}/integrations").json()
    assert "credentials" not in listed[0]


def test_plugin_validate_key(client):
    project = _project(client)
    integration = _wordpress(client, project["id"], url="https://blog.acme.test")

    valid = client.post(
        "/integrations/wordpress/validate-key", json={"integration_key": integration["integration_key"]}
    )
    assert valid.status_code == 200
    assert valid.json() == {"valid": True, "integration_id": integration["id"], "project_id": project["id"]}

    via_header = client.post(
        "/integrations/wordpress/validate-key",
        json={},
        headers={"X-Integration-Key": integration["integration_key"]},
    )
    assert via_header.status_code == 200

    malformed = client.post("/integrations/wordpress/validate-key", json={"integration_key": "nope"})
    assert malformed.status_code == 400
    unknown = client.post("/integrations/wordpress/validate-key", json={"integration_key": "rk_" + "0" * 48})
    assert unknown.status_code == 404


def test_plugin_token_rotation(client):
    project = _project(client)
    _wordpress(client, project["id"], url="https://blog.acme.test", access_token="a1", refresh_token="r1")

    first = client.post("/integrations/wordpress/oauth/token", json={"grant_type": "refresh_token", "refresh_token": "r1"})
    assert first.status_code == 200
    assert first.json()["token_type"] == "Bearer"

    reused = client.post("/integrations/wordpress/oauth/token", json={"grant_type": "refresh_token", "refresh_token": "r1"})
    assert reused.status_code == 401
    assert reused.json()["code"] == "AuthExpired"

    wrong_grant = client.post("/integrations/wordpress/oauth/token", json={"grant_type": "password"})
    assert wrong_grant.status_code == 400


def test_jobs_enqueue_retry_and_cancel(client):
    enqueued = client.post(
        "/jobs/enqueue",
        json={"queue_name": "analytics_sync", "payload": {"project_id": "p1"}, "dedupe_key": "sync-p1"},
    )
    job_id = enqueued.json()["job_id"]
    again = client.post(
        "/jobs/enqueue",
        json={"queue_name": "analytics_sync", "payload": {"project_id": "p1"}, "dedupe_key": "sync-p1"},
    )
    assert again.json()["job_id"] == job_id

    assert client.post("/jobs/enqueue", json={"queue_name": "emails"}).status_code == 400
    assert client.post(f"/jobs/{job_id}/retry").json()["retried"] is False
    assert client.post(f"/jobs/{job_id}/cancel").json()["canceled"] is True
    assert client.post("/jobs/missing/retry").status_code == 404


def test_scheduler_tick_endpoint(client):
    response = client.post("/scheduler/tick")
    assert response.status_code == 200
    assert response.json()["skipped"] is False


def test_admin_token_is_enforced(client, monkeypatch):
    monkeypatch.setenv("AUTOSEO_ADMIN_TOKEN", "secret")

    assert client.get("/projects").status_code == 401
    assert client.get("/projects", headers={"X-Admin-Token": "secret"}).status_code == 200
    assert client.get("/health").status_code == 200
    assert client.post("/integrations/wordpress/validate-key", json={"integration_key": "nope"}).status_code == 400


def test_runtime_config_change_reaches_auto_publish(client):
    project = _project(client)
    _wordpress(client, project["id"])
    first = _article(client, project["id"])
    assert client.patch(f"/articles/{first['id']}", json={"status": "published"}).json()["auto_publish"]
    previous_hooks = app.state.hooks

    config = client.get("/admin/config/runtime").json()["config"]
    config["hooks"]["auto_publish_enabled"] = False
    assert client.put("/admin/config/runtime", json={"config": config}).status_code == 200

    second = _article(client, project["id"])
    response = client.patch(f"/articles/{second['id']}", json={"status": "published"})

    assert response.status_code == 200
    assert response.json()["auto_publish"] is None
    assert app.state.hooks is not previous_hooks
