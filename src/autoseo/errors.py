from __future__ import annotations

from typing import Any


class PipelineError(ValueError):
    """Domain failure with a stable code.

    ``retryable`` tells the worker harness whether the job should go back on the
    queue with backoff or straight to a terminal state.
    """

    code = "PipelineError"
    retryable = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFound(PipelineError):
    code = "NotFound"


class AlreadyUsed(PipelineError):
    code = "AlreadyUsed"


class NoIntegrationConfigured(PipelineError):
    code = "NoIntegrationConfigured"


class AuthExpired(PipelineError):
    code = "AuthExpired"


class PlatformRejected(PipelineError):
    code = "PlatformRejected"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status = status
        self.body = body
        self.retryable = status is not None and (status == 429 or status >= 500)


class TransportError(PipelineError):
    code = "TransportError"
    retryable = True


class PublishInProgress(PipelineError):
    code = "PublishInProgress"
    retryable = True


class ValidationFailed(PipelineError):
    code = "ValidationFailed"


class InvalidTransition(ValidationFailed):
    code = "InvalidTransition"


class Exhausted(PipelineError):
    code = "Exhausted"


ERROR_TYPES: dict[str, type[PipelineError]] = {
    cls.code: cls
    for cls in (
        NotFound,
        AlreadyUsed,
        NoIntegrationConfigured,
        AuthExpired,
        PlatformRejected,
        TransportError,
        PublishInProgress,
        ValidationFailed,
        InvalidTransition,
        Exhausted,
    )
}


def error_from_code(code: str | None, message: str, *, retryable: bool | None = None) -> PipelineError:
    cls = ERROR_TYPES.get(code or "", PipelineError)
    exc = cls(message)
    if retryable is not None:
        exc.retryable = retryable
    return exc
