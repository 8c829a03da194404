"""Post-commit hooks for article status changes.

Hooks run after the change they react to has been committed, on a small
thread pool, each with its own database connection. A hook's failure is
captured in its ``HookOutcome``; it never propagates into, or undoes, the
write that triggered it.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable

from .config import Config, default_config
from .errors import PipelineError
from .models import ArticleStatusChanged, Platform, ResolutionHint
from .publishing.http import Transport
from .publishing.registry import AdapterRegistry
from .publishing.service import PublishingService
from .services.credential_store import CredentialStore
from .services.integrations_service import resolve_integration
from .state import should_auto_publish
from .utils import log_event

Hook = Callable[[ArticleStatusChanged], "dict[str, Any] | None"]


@dataclass(frozen=True)
class HookOutcome:
    hook: str
    ok: bool
    result: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None


class PostCommitHooks:
    def __init__(self, max_workers: int = 4) -> None:
        self._hooks: list[tuple[str, Hook]] = []
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="hook")
        self.logger = logging.getLogger("autoseo.hooks")

    def register(self, name: str, hook: Hook) -> None:
        self._hooks.append((name, hook))

    def dispatch(self, event: ArticleStatusChanged) -> list[Future]:
        return [self._executor.submit(self._run, name, hook, event) for name, hook in self._hooks]

    def dispatch_and_wait(self, event: ArticleStatusChanged, timeout: float) -> list[HookOutcome]:
        outcomes: list[HookOutcome] = []
        for (name, _), future in zip(self._hooks, self.dispatch(event)):
            try:
                outcomes.append(future.result(timeout=timeout))
            except FutureTimeout:
                log_event(self.logger, logging.WARNING, "hook_timeout", hook=name, timeout=timeout)
                outcomes.append(HookOutcome(hook=name, ok=False, error="timed out", error_code="Timeout"))
        return outcomes

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _run(self, name: str, hook: Hook, event: ArticleStatusChanged) -> HookOutcome:
        try:
            result = hook(event)
        except PipelineError as exc:
            log_event(
                self.logger,
                logging.WARNING,
                "hook_failed",
                hook=name,
                article_id=event.article_id,
                error_code=exc.code,
                error=exc.message,
            )
            return HookOutcome(hook=name, ok=False, error=exc.message, error_code=exc.code)
        except Exception as exc:  # noqa: BLE001
            log_event(
                self.logger,
                logging.ERROR,
                "hook_crashed",
                hook=name,
                article_id=event.article_id,
                error=str(exc),
            )
            return HookOutcome(hook=name, ok=False, error=str(exc), error_code="InternalError")
        return HookOutcome(hook=name, ok=True, result=result)


def make_auto_publish_hook(
    conn_factory: Callable[[], Any],
    registry: AdapterRegistry,
    config: Config | None = None,
    http: Transport | None = None,
) -> Hook:
    """Publish an article to the project's default integration when a user publishes it.

    Returns a diagnostic describing what was found and what happened.
    """
    config = config or default_config()
    logger = logging.getLogger("autoseo.hooks.auto_publish")

    def auto_publish(event: ArticleStatusChanged) -> dict[str, Any] | None:
        if not config.hooks.auto_publish_enabled:
            return None
        if not should_auto_publish(event.from_status, event.to_status, event.initiated_by):
            return None
        diagnostic: dict[str, Any] = {
            "platform": None,
            "has_integration_key": False,
            "has_wordpress_url": False,
            "missing_fields": [],
            "published": False,
            "error": None,
        }
        conn = conn_factory()
        try:
            try:
                integration = resolve_integration(conn, event.project_id)
            except PipelineError as exc:
                diagnostic.update(error=exc.message, error_code=exc.code)
                log_event(
                    logger,
                    logging.INFO,
                    "auto_publish_no_integration",
                    article_id=event.article_id,
                    project_id=event.project_id,
                )
                return diagnostic
            credentials, _ = CredentialStore(conn).load(integration.id)
            adapter = registry.get(integration.platform)
            diagnostic.update(
                platform=integration.platform.value,
                has_integration_key=bool(credentials.get("integration_key")),
                has_wordpress_url=integration.platform is Platform.WORDPRESS
                and bool(credentials.get("url")),
                missing_fields=adapter.missing_fields(credentials),
            )
            service = PublishingService(conn, registry, config.publishing, http=http)
            result = service.publish(
                event.article_id,
                event.project_id,
                ResolutionHint(integration_id=integration.id),
            )
            diagnostic.update(
                published=result.success,
                error=result.error,
                error_code=result.error_code,
                url=result.url,
                post_id=result.post_id,
            )
            log_event(
                logger,
                logging.INFO if result.success else logging.WARNING,
                "auto_publish_finished",
                article_id=event.article_id,
                platform=diagnostic["platform"],
                published=result.success,
                error_code=result.error_code,
            )
            return diagnostic
        finally:
            conn.close()

    return auto_publish
