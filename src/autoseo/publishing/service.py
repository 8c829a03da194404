from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from ..config import PublishingConfig, default_config
from ..errors import (
    AuthExpired,
    NoIntegrationConfigured,
    PipelineError,
    PublishInProgress,
    TransportError,
)
from ..models import Article, Integration, PublishRequest, PublishResult, ResolutionHint
from ..services.articles_service import require_article
from ..services.credential_store import CredentialStore
from ..services.integrations_service import resolve_integration
from ..storage import (
    claim_publish_attempt,
    confirm_publish_attempt,
    fail_publish_attempt,
    get_publish_attempt,
    release_publish_attempt,
)
from ..utils import log_event, new_id, slugify
from .auth import OAuthAuth, TokenGrant, refresh_oauth_token, resolve_auth
from .http import HttpClient, Transport
from .registry import AdapterRegistry

ATTEMPTED = "attempted"
CONFIRMED = "confirmed"


class PublishingService:
    """Publishes one article to one resolved integration, at most once.

    Every call returns a ``PublishResult``. A ledger row keyed by
    ``article_id:integration_id`` is claimed before the remote call: a
    confirmed row short-circuits, a row held by a live attempt elsewhere
    yields a retryable ``PublishInProgress``, and a row left ``attempted`` by
    an ambiguous failure is reconciled with ``find_existing`` before
    publishing again.
    """

    def __init__(
        self,
        conn: Any,
        registry: AdapterRegistry,
        config: PublishingConfig | None = None,
        http: Transport | None = None,
        store: CredentialStore | None = None,
    ) -> None:
        self.conn = conn
        self.registry = registry
        self.config = config or default_config().publishing
        self.http = http or HttpClient(
            user_agent=self.config.user_agent, timeout=self.config.http_timeout_seconds
        )
        self.store = store or CredentialStore(conn, lease_seconds=self.config.refresh_lease_seconds)
        self.logger = logging.getLogger("autoseo.publishing")

    def publish(
        self,
        article_id: str,
        project_id: str,
        hint: ResolutionHint | None = None,
        job_id: str | None = None,
        status: str = "published",
    ) -> PublishResult:
        integration: Integration | None = None
        try:
            article = require_article(self.conn, article_id, project_id)
            integration = resolve_integration(self.conn, project_id, hint)
            result = self._publish_to(article, integration, job_id, status)
        except PipelineError as exc:
            result = PublishResult.failed(exc.message, exc.code, retryable=exc.retryable)
        if integration is not None:
            result = replace(
                result, integration_id=integration.id, platform=integration.platform.value
            )
        log_event(
            self.logger,
            logging.INFO if result.success else logging.WARNING,
            "article_published" if result.success else "article_publish_failed",
            article_id=article_id,
            project_id=project_id,
            integration_id=result.integration_id,
            platform=result.platform,
            post_id=result.post_id,
            deduplicated=result.deduplicated,
            error_code=result.error_code,
            retryable=result.retryable,
            error=result.error,
        )
        return result

    def _publish_to(
        self, article: Article, integration: Integration, job_id: str | None, status: str
    ) -> PublishResult:
        if not integration.is_active:
            raise NoIntegrationConfigured(f"integration {integration.id} is inactive")
        adapter = self.registry.get(integration.platform)
        key = publish_key(article.id, integration.id)
        attempt = get_publish_attempt(self.conn, key)
        if attempt and attempt["status"] == CONFIRMED:
            return _confirmed_result(attempt)

        credentials, _ = self.store.load(integration.id)
        missing = adapter.missing_fields(credentials)
        if missing:
            return PublishResult.failed(
                f"missing credential fields: {', '.join(missing)}", "ValidationFailed"
            )
        auth = resolve_auth(credentials, adapter.supported_auth)
        if isinstance(auth, OAuthAuth) and auth.is_expired(
            skew_seconds=self.config.token_refresh_skew_seconds
        ):
            credentials = self._refresh(integration, credentials)
            auth = resolve_auth(credentials, adapter.supported_auth)

        request = build_publish_request(article, status)
        attempt = get_publish_attempt(self.conn, key)
        claimed = claim_publish_attempt(
            self.conn,
            key,
            article.id,
            integration.id,
            job_id,
            holder=new_id(),
            claim_seconds=self.config.http_timeout_seconds,
            observed=attempt,
        )
        if not claimed:
            current = get_publish_attempt(self.conn, key)
            if current and current["status"] == CONFIRMED:
                return _confirmed_result(current)
            raise PublishInProgress(
                f"article {article.id} is already being published to integration {integration.id}"
            )

        if attempt and attempt["status"] == ATTEMPTED:
            try:
                existing = adapter.find_existing(request, credentials, auth)
            except PipelineError as exc:
                release_publish_attempt(self.conn, key, f"lookup failed: {exc.message}")
                raise
            if existing is not None:
                confirm_publish_attempt(self.conn, key, existing.post_id, existing.url)
                log_event(
                    self.logger,
                    logging.INFO,
                    "publish_reconciled",
                    article_id=article.id,
                    integration_id=integration.id,
                    post_id=existing.post_id,
                )
                return replace(existing, deduplicated=True)

        result = adapter.publish(request, credentials, auth)
        if result.success:
            confirm_publish_attempt(self.conn, key, result.post_id, result.url)
        elif result.error_code == TransportError.code:
            release_publish_attempt(self.conn, key, result.error or "transport error")
        else:
            fail_publish_attempt(self.conn, key, result.error or "publish failed")
        return result

    def _refresh(self, integration: Integration, credentials: dict[str, str]) -> dict[str, str]:
        if not credentials.get("refresh_token"):
            raise AuthExpired("access token expired and no refresh token is stored")
        token_url = credentials.get("token_url") or self.config.oauth_token_urls.get(
            integration.platform.value, ""
        )
        if not token_url:
            raise AuthExpired(
                f"access token expired and no token endpoint is configured for "
                f"{integration.platform.value}"
            )

        def refresher(refresh_token: str) -> TokenGrant:
            return refresh_oauth_token(
                self.http,
                token_url,
                refresh_token,
                client_id=credentials.get("client_id"),
                client_secret=credentials.get("client_secret"),
                timeout=self.config.http_timeout_seconds,
            )

        return self.store.refresh_oauth(
            integration.id, refresher, skew_seconds=self.config.token_refresh_skew_seconds
        )


def publish_key(article_id: str, integration_id: str) -> str:
    return f"{article_id}:{integration_id}"


def build_publish_request(article: Article, status: str = "published") -> PublishRequest:
    return PublishRequest(
        title=article.title,
        content=article.content,
        status=status,
        slug=slugify(article.title),
        meta_title=article.meta_title,
        meta_description=article.meta_description,
        featured_image_url=article.featured_image_url,
    )


def is_confirmed(conn: Any, article_id: str, integration_id: str) -> bool:
    attempt = get_publish_attempt(conn, publish_key(article_id, integration_id))
    return bool(attempt and attempt["status"] == CONFIRMED)


def _confirmed_result(attempt: dict[str, Any]) -> PublishResult:
    return PublishResult(
        success=True,
        url=attempt["remote_url"],
        post_id=attempt["remote_post_id"],
        deduplicated=True,
    )
