from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Iterator

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import (
    ConfigError,
    bootstrap_runtime_config,
    get_runtime_config,
    get_state_db_path,
    load_runtime_config,
    set_runtime_config,
)
from .errors import PipelineError, ValidationFailed
from .hooks import PostCommitHooks, make_auto_publish_hook
from .models import QUEUE_ARTICLE_GENERATION, QUEUE_PUBLISHING, Job, Platform, ResolutionHint
from .publishing.auth import resolve_auth
from .publishing.registry import AdapterRegistry, build_default_registry
from .publishing.service import PublishingService
from .queue import Backoff, EnqueueOptions, JobQueue
from .scheduler import tick
from .services.articles_service import (
    article_to_dict,
    create_article,
    delete_article,
    list_articles,
    mark_published,
    require_article,
    update_article,
)
from .services.credential_store import CredentialStore
from .services.integrations_service import (
    create_or_update_integration,
    delete_integration,
    integration_to_dict,
    list_integrations,
    regenerate_integration_key,
    require_integration,
    validate_integration_key,
)
from .services.keywords_service import (
    create_keyword,
    delete_keyword,
    generate_plan,
    keyword_to_dict,
    list_keywords,
    plan_keyword,
    require_keyword,
)
from .services.oauth_service import refresh_grant
from .services.projects_service import (
    complete_onboarding,
    create_project,
    delete_project,
    list_projects,
    require_project,
    update_project,
)
from .state import INITIATED_BY_USER
from .storage import init_db, list_analytics_snapshots
from .utils import configure_logging, log_event

app = FastAPI(title="AutoSEO API")
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

STATUS_BY_CODE = {
    "NotFound": 404,
    "AlreadyUsed": 409,
    "InvalidTransition": 409,
    "ValidationFailed": 400,
    "NoIntegrationConfigured": 400,
    "AuthExpired": 401,
    "PlatformRejected": 502,
    "TransportError": 502,
    "PublishInProgress": 409,
}

_STATE_LOCK = threading.Lock()


@app.exception_handler(PipelineError)
def _pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=STATUS_BY_CODE.get(exc.code, 400))


def _require_admin_token(request: Request) -> None:
    token = os.environ.get("AUTOSEO_ADMIN_TOKEN")
    if not token:
        return
    if request.headers.get("X-Admin-Token") != token:
        raise HTTPException(status_code=401, detail="unauthorized")


@contextmanager
def _connection(request: Request) -> Iterator[Any]:
    conn = init_db(get_state_db_path())
    try:
        bootstrap_runtime_config(conn)
        yield conn
    finally:
        conn.close()


def _registry(request: Request, conn: Any) -> AdapterRegistry:
    state = request.app.state
    with _STATE_LOCK:
        registry = getattr(state, "registry", None)
        if registry is None:
            config = load_runtime_config(conn)
            registry = build_default_registry(config.publishing, getattr(state, "http", None))
            state.registry = registry
        return registry


def _hooks(request: Request, conn: Any) -> PostCommitHooks:
    registry = _registry(request, conn)
    state = request.app.state
    with _STATE_LOCK:
        hooks = getattr(state, "hooks", None)
        if hooks is None:
            path = get_state_db_path()
            hooks = PostCommitHooks()
            hooks.register(
                "auto_publish",
                make_auto_publish_hook(
                    lambda: init_db(path),
                    registry,
                    load_runtime_config(conn),
                    http=getattr(state, "http", None),
                ),
            )
            state.hooks = hooks
        return hooks


def _reset_runtime_state(state: Any) -> None:
    with _STATE_LOCK:
        hooks = getattr(state, "hooks", None)
        state.registry = None
        state.hooks = None
    if hooks is not None:
        hooks.shutdown(wait=False)


def _job_to_dict(job: Job) -> dict[str, object]:
    return asdict(job)


class RuntimeConfigRequest(BaseModel):
    config: dict


class ProjectRequest(BaseModel):
    name: str | None = None
    website_url: str | None = None
    language: str | None = None
    onboarding_complete: bool | None = None


class KeywordRequest(BaseModel):
    keyword: str
    search_volume: int | None = None
    difficulty: int | None = None
    planned_date: str | None = None


class KeywordPlanRequest(BaseModel):
    planned_date: str


class PlanGenerationRequest(BaseModel):
    project_id: str
    keyword_ids: list[str] | None = None
    start: str | None = None
    replace_existing: bool = False


class ArticleRequest(BaseModel):
    title: str
    content: str = ""
    keyword_id: str | None = None
    meta_title: str | None = None
    meta_description: str | None = None
    featured_image_url: str | None = None


class ArticleUpdateRequest(BaseModel):
    title: str | None = None
    content: str | None = None
    meta_title: str | None = None
    meta_description: str | None = None
    featured_image_url: str | None = None
    status: str | None = None
    scheduled_for: str | None = None


class PublishRequestBody(BaseModel):
    integration_id: str | None = None
    platform: str | None = None
    background: bool = False


class GenerateRequest(BaseModel):
    project_id: str
    keyword: str | None = None
    keyword_id: str | None = None
    target_word_count: int | None = None


class IntegrationRequest(BaseModel):
    platform: str
    credentials: dict[str, Any] | None = None
    is_active: bool = True


class ValidateKeyRequest(BaseModel):
    integration_key: str | None = None


class TokenRequest(BaseModel):
    grant_type: str
    refresh_token: str | None = None


class EnqueueRequest(BaseModel):
    queue_name: str
    payload: dict[str, Any] | None = None
    job_name: str | None = None
    priority: int = 0
    delay_seconds: int = 0
    dedupe_key: str | None = None
    max_attempts: int | None = None
    backoff_type: str | None = None
    backoff_delay_seconds: int | None = None
    repeat: str | None = None


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "AutoSEO API"}


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.on_event("startup")
def _startup() -> None:
    configure_logging("autoseo.api")


@app.on_event("shutdown")
def _shutdown() -> None:
    hooks = getattr(app.state, "hooks", None)
    if hooks is not None:
        hooks.shutdown(wait=False)


admin = APIRouter(dependencies=[Depends(_require_admin_token)])


@admin.get("/admin/config/runtime")
def runtime_config_get(request: Request) -> dict[str, object]:
    with _connection(request) as conn:
        try:
            cfg = get_runtime_config(conn)
        except ConfigError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"config": cfg}


@admin.put("/admin/config/runtime")
def runtime_config_set(request: Request, payload: RuntimeConfigRequest) -> dict[str, object]:
    with _connection(request) as conn:
        try:
            set_runtime_config(conn, payload.config)
        except ConfigError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    _reset_runtime_state(request.app.state)
    return {"status": "ok"}


@admin.post("/projects")
def projects_create(request: Request, payload: ProjectRequest) -> dict[str, object]:
    with _connection(request) as conn:
        return asdict(create_project(conn, payload.model_dump(exclude_none=True)))


@admin.get("/projects")
def projects_list(request: Request) -> list[dict[str, object]]:
    with _connection(request) as conn:
        return [asdict(project) for project in list_projects(conn)]


@admin.get("/projects/{project_id}")
def projects_read(request: Request, project_id: str) -> dict[str, object]:
    with _connection(request) as conn:
        return asdict(require_project(conn, project_id))


@admin.patch("/projects/{project_id}")
def projects_update(request: Request, project_id: str, payload: ProjectRequest) -> dict[str, object]:
    with _connection(request) as conn:
        return asdict(update_project(conn, project_id, payload.model_dump(exclude_none=True)))


@admin.post("/projects/{project_id}/onboarding/complete")
def projects_complete_onboarding(request: Request, project_id: str) -> dict[str, object]:
    with _connection(request) as conn:
        return asdict(complete_onboarding(conn, project_id))


@admin.delete("/projects/{project_id}")
def projects_delete(request: Request, project_id: str) -> dict[str, str]:
    with _connection(request) as conn:
        delete_project(conn, project_id)
    return {"status": "deleted"}


@admin.get("/projects/{project_id}/analytics")
def projects_analytics(request: Request, project_id: str, limit: int = 30) -> list[dict[str, object]]:
    with _connection(request) as conn:
        require_project(conn, project_id)
        return list_analytics_snapshots(conn, project_id, limit=limit)


@admin.post("/projects/{project_id}/keywords")
def keywords_create(request: Request, project_id: str, payload: KeywordRequest) -> dict[str, object]:
    with _connection(request) as conn:
        return keyword_to_dict(create_keyword(conn, project_id, payload.model_dump()))


@admin.get("/projects/{project_id}/keywords")
def keywords_list(
    request: Request, project_id: str, status: str | None = None
) -> list[dict[str, object]]:
    with _connection(request) as conn:
        require_project(conn, project_id)
        return [keyword_to_dict(keyword) for keyword in list_keywords(conn, project_id, status)]


@admin.post("/keywords/plan")
def keywords_generate_plan(request: Request, payload: PlanGenerationRequest) -> dict[str, object]:
    with _connection(request) as conn:
        planned = generate_plan(
            conn,
            payload.project_id,
            keyword_ids=payload.keyword_ids,
            start=payload.start,
            replace_existing=payload.replace_existing,
        )
    return {"planned": [keyword_to_dict(keyword) for keyword in planned]}


@admin.post("/keywords/{keyword_id}/plan")
def keywords_plan(request: Request, keyword_id: str, payload: KeywordPlanRequest) -> dict[str, object]:
    with _connection(request) as conn:
        result = plan_keyword(conn, keyword_id, payload.planned_date)
        keyword = require_keyword(conn, keyword_id)
    return {"applied": result.applied, "reason": result.reason, "keyword": keyword_to_dict(keyword)}


@admin.delete("/keywords/{keyword_id}")
def keywords_delete(request: Request, keyword_id: str) -> dict[str, str]:
    with _connection(request) as conn:
        delete_keyword(conn, keyword_id)
    return {"status": "deleted"}


@admin.post("/projects/{project_id}/articles")
def articles_create(request: Request, project_id: str, payload: ArticleRequest) -> dict[str, object]:
    with _connection(request) as conn:
        return article_to_dict(create_article(conn, project_id, payload.model_dump()))


@admin.get("/projects/{project_id}/articles")
def articles_list(
    request: Request, project_id: str, status: str | None = None, limit: int = 100
) -> list[dict[str, object]]:
    with _connection(request) as conn:
        require_project(conn, project_id)
        return [article_to_dict(article) for article in list_articles(conn, project_id, status, limit)]


@admin.post("/articles/generate")
def articles_generate(request: Request, payload: GenerateRequest) -> dict[str, str]:
    with _connection(request) as conn:
        require_project(conn, payload.project_id)
        queue = JobQueue(conn, load_runtime_config(conn))
        job_id = queue.enqueue(
            QUEUE_ARTICLE_GENERATION,
            payload.model_dump(exclude_none=True),
            job_name="manual-generation",
        )
    return {"job_id": job_id}


@admin.get("/articles/{article_id}")
def articles_read(request: Request, article_id: str) -> dict[str, object]:
    with _connection(request) as conn:
        return article_to_dict(require_article(conn, article_id))


@admin.patch("/articles/{article_id}")
def articles_update(
    request: Request, article_id: str, payload: ArticleUpdateRequest
) -> dict[str, object]:
    with _connection(request) as conn:
        config = load_runtime_config(conn)
        update = update_article(
            conn,
            article_id,
            payload.model_dump(exclude_unset=True),
            initiated_by=INITIATED_BY_USER,
            hooks=_hooks(request, conn),
            hook_timeout=config.hooks.auto_publish_timeout_seconds,
        )
    auto_publish = None
    for outcome in update.hook_outcomes:
        if outcome.hook != "auto_publish":
            continue
        if outcome.ok:
            auto_publish = outcome.result
        else:
            auto_publish = {"published": False, "error": outcome.error, "error_code": outcome.error_code}
    return {"article": article_to_dict(update.article), "auto_publish": auto_publish}


@admin.post("/articles/{article_id}/publish")
def articles_publish(
    request: Request, article_id: str, payload: PublishRequestBody
) -> dict[str, object]:
    logger = logging.getLogger("autoseo.api")
    with _connection(request) as conn:
        article = require_article(conn, article_id)
        if payload.background:
            queue = JobQueue(conn, load_runtime_config(conn))
            job_payload: dict[str, object] = {"article_id": article.id, "project_id": article.project_id}
            if payload.integration_id:
                job_payload["integration_id"] = payload.integration_id
            if payload.platform:
                job_payload["platform"] = payload.platform
            job_id = queue.enqueue(QUEUE_PUBLISHING, job_payload, job_name="manual-publish")
            return {"job_id": job_id}
        config = load_runtime_config(conn)
        service = PublishingService(
            conn, _registry(request, conn), config.publishing, http=getattr(request.app.state, "http", None)
        )
        hint = ResolutionHint(
            integration_id=payload.integration_id,
            platform=Platform.parse(payload.platform) if payload.platform else None,
        )
        result = service.publish(article.id, article.project_id, hint)
        if result.success:
            mark_published(conn, article.id)
        log_event(
            logger,
            logging.INFO,
            "manual_publish",
            article_id=article.id,
            success=result.success,
            error_code=result.error_code,
        )
        return asdict(result)


@admin.delete("/articles/{article_id}")
def articles_delete(request: Request, article_id: str) -> dict[str, str]:
    with _connection(request) as conn:
        delete_article(conn, article_id)
    return {"status": "deleted"}


@admin.post("/projects/{project_id}/integrations")
def integrations_upsert(
    request: Request, project_id: str, payload: IntegrationRequest
) -> dict[str, object]:
    with _connection(request) as conn:
        integration = create_or_update_integration(
            conn, project_id, payload.platform, payload.credentials, payload.is_active
        )
        credentials, _ = CredentialStore(conn).load(integration.id)
        return integration_to_dict(integration, credentials)


@admin.get("/projects/{project_id}/integrations")
def integrations_list(request: Request, project_id: str) -> list[dict[str, object]]:
    with _connection(request) as conn:
        require_project(conn, project_id)
        return [integration_to_dict(item) for item in list_integrations(conn, project_id)]


@admin.delete("/integrations/{integration_id}")
def integrations_delete(request: Request, integration_id: str) -> dict[str, str]:
    with _connection(request) as conn:
        delete_integration(conn, integration_id)
    return {"status": "deleted"}


@admin.post("/integrations/{integration_id}/regenerate-key")
def integrations_regenerate_key(request: Request, integration_id: str) -> dict[str, str]:
    with _connection(request) as conn:
        return {"integration_key": regenerate_integration_key(conn, integration_id)}


@admin.post("/integrations/{integration_id}/test")
def integrations_test(request: Request, integration_id: str) -> dict[str, object]:
    with _connection(request) as conn:
        integration = require_integration(conn, integration_id)
        adapter = _registry(request, conn).get(integration.platform)
        credentials, _ = CredentialStore(conn).load(integration.id)
        missing = adapter.missing_fields(credentials)
        if missing:
            return {"ok": False, "missing_fields": missing}
        try:
            auth = resolve_auth(credentials, adapter.supported_auth)
        except ValidationFailed as exc:
            return {"ok": False, "error": exc.message}
        return adapter.test_connection(credentials, auth)


@admin.post("/jobs/enqueue")
def jobs_enqueue(request: Request, job: EnqueueRequest) -> dict[str, str]:
    backoff = None
    if job.backoff_type:
        backoff = Backoff(type=job.backoff_type, delay_seconds=job.backoff_delay_seconds or 0)
    options = EnqueueOptions(
        repeat=job.repeat,
        max_attempts=job.max_attempts,
        backoff=backoff,
        priority=job.priority,
        delay_seconds=job.delay_seconds,
        dedupe_key=job.dedupe_key,
    )
    with _connection(request) as conn:
        queue = JobQueue(conn, load_runtime_config(conn))
        return {"job_id": queue.enqueue(job.queue_name, job.payload or {}, options, job.job_name)}


@admin.get("/jobs")
def jobs_list(
    request: Request, limit: int = 50, queue: str | None = None, status: str | None = None
) -> list[dict[str, object]]:
    with _connection(request) as conn:
        job_queue = JobQueue(conn, load_runtime_config(conn))
        return [_job_to_dict(job) for job in job_queue.list_jobs(limit, queue, status)]


@admin.get("/jobs/dead")
def jobs_dead(request: Request, queue: str | None = None, limit: int = 100) -> list[dict[str, object]]:
    with _connection(request) as conn:
        job_queue = JobQueue(conn, load_runtime_config(conn))
        return [_job_to_dict(job) for job in job_queue.list_dead(queue, limit)]


@admin.post("/jobs/{job_id}/retry")
def jobs_retry(request: Request, job_id: str) -> dict[str, object]:
    with _connection(request) as conn:
        job_queue = JobQueue(conn, load_runtime_config(conn))
        if job_queue.get(job_id) is None:
            raise HTTPException(status_code=404, detail="job not found")
        return {"job_id": job_id, "retried": job_queue.retry_dead(job_id)}


@admin.post("/jobs/{job_id}/cancel")
def jobs_cancel(request: Request, job_id: str) -> dict[str, object]:
    with _connection(request) as conn:
        job_queue = JobQueue(conn, load_runtime_config(conn))
        return {"job_id": job_id, "canceled": job_queue.cancel(job_id)}


@admin.post("/scheduler/tick")
def scheduler_tick(request: Request) -> dict[str, object]:
    with _connection(request) as conn:
        config = load_runtime_config(conn)
        return tick(conn, JobQueue(conn, config), config)


plugin = APIRouter(prefix="/integrations/wordpress")


@plugin.post("/validate-key")
def wordpress_validate_key(request: Request, payload: ValidateKeyRequest) -> dict[str, object]:
    key = payload.integration_key or request.headers.get("X-Integration-Key") or ""
    with _connection(request) as conn:
        integration = validate_integration_key(conn, key)
    return {"valid": True, "integration_id": integration.id, "project_id": integration.project_id}


@plugin.post("/oauth/token")
def wordpress_oauth_token(request: Request, payload: TokenRequest) -> dict[str, object]:
    if payload.grant_type != "refresh_token":
        raise ValidationFailed(f"unsupported grant type {payload.grant_type}")
    with _connection(request) as conn:
        return refresh_grant(conn, payload.refresh_token or "")


app.include_router(admin)
app.include_router(plugin)


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("autoseo")
    except Exception:  # noqa: BLE001
        return "unknown"
