from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from ..errors import PipelineError, PlatformRejected, TransportError
from ..models import Platform, PublishRequest, PublishResult
from ..utils import log_event
from .auth import Auth, BasicAuth, OAuthAuth, StaticKeyAuth
from .http import HttpResponse, Transport, basic_auth_header, error_message


class PlatformAdapter(ABC):
    """One publishing target.

    ``publish`` never raises for platform or network failures: every outcome
    comes back as a ``PublishResult``. ``find_existing`` is the lookup used to
    reconcile an attempt whose outcome is unknown; it raises
    ``TransportError``/``PlatformRejected`` so callers can tell "not there"
    from "could not check".
    """

    platform: Platform
    supported_auth: tuple[str, ...] = ()

    def __init__(self, http: Transport, timeout: float = 30) -> None:
        self.http = http
        self.timeout = timeout
        self.logger = logging.getLogger(f"autoseo.publishing.{self.platform.value}")

    @abstractmethod
    def missing_fields(self, credentials: dict[str, str]) -> list[str]:
        """Credential fields required before any call can be made."""

    @abstractmethod
    def _publish(
        self, request: PublishRequest, credentials: dict[str, str], auth: Auth
    ) -> PublishResult: ...

    @abstractmethod
    def find_existing(
        self, request: PublishRequest, credentials: dict[str, str], auth: Auth
    ) -> PublishResult | None: ...

    @abstractmethod
    def test_connection(self, credentials: dict[str, str], auth: Auth) -> dict[str, Any]: ...

    def publish(
        self, request: PublishRequest, credentials: dict[str, str], auth: Auth
    ) -> PublishResult:
        missing = self.missing_fields(credentials)
        if missing:
            return PublishResult.failed(
                f"missing credential fields: {', '.join(missing)}", "ValidationFailed"
            )
        try:
            result = self._publish(request, credentials, auth)
        except TransportError as exc:
            log_event(self.logger, logging.WARNING, "publish_transport_error", error=str(exc))
            return PublishResult.failed(str(exc), exc.code, retryable=True)
        except PipelineError as exc:
            return PublishResult.failed(exc.message, exc.code, retryable=exc.retryable)
        log_event(
            self.logger,
            logging.INFO if result.success else logging.WARNING,
            "publish_completed" if result.success else "publish_rejected",
            post_id=result.post_id,
            url=result.url,
            error=result.error,
        )
        return result

    def auth_headers(self, auth: Auth) -> dict[str, str]:
        if isinstance(auth, StaticKeyAuth):
            return {"X-Integration-Key": auth.key}
        if isinstance(auth, OAuthAuth):
            return {"Authorization": f"Bearer {auth.access_token}"}
        if isinstance(auth, BasicAuth):
            return {"Authorization": basic_auth_header(auth.username, auth.password)}
        raise TypeError(f"unsupported auth {type(auth).__name__}")

    def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Any = None,
    ) -> HttpResponse:
        return self.http.request(method, url, headers=headers, json_body=body, timeout=self.timeout)

    def _rejected(self, response: HttpResponse) -> PublishResult:
        retryable = response.status == 429 or response.status >= 500
        return PublishResult.failed(error_message(response), "PlatformRejected", retryable=retryable)

    def _raise_for_status(self, response: HttpResponse) -> None:
        if not response.ok:
            raise PlatformRejected(
                error_message(response), status=response.status, body=response.body[:500]
            )
