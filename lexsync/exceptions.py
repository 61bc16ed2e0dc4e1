"""Exception taxonomy shared by clients, the sync pipeline and the API layer.

Upstream failures carry the originating system, HTTP status and body so that
retry loops can decide whether another attempt makes sense and result payloads
can surface what the remote side actually said.
"""
from __future__ import annotations

from typing import Any


class LexSyncError(Exception):
    """Base class for all service errors."""


class ValidationError(LexSyncError):
    """Malformed or missing request input (reported as HTTP 400, never retried)."""


class FatalConfigurationError(LexSyncError):
    """Required connection settings are absent at process start."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required configuration: {', '.join(self.missing)}")


class UpstreamError(LexSyncError):
    """A call to LEX or Zoho failed."""

    retryable = False

    def __init__(self, system: str, message: str, *, status: int | None = None, body: Any = None):
        self.system = system
        self.status = status
        self.body = body
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": type(self).__name__,
            "system": self.system,
            "status": self.status,
            "message": str(self),
            "body": self.body,
        }


class UpstreamNotFound(UpstreamError):
    """The requested record does not exist upstream."""


class UpstreamTransientError(UpstreamError):
    """Network failure, timeout, 429 or 5xx. Safe to retry."""

    retryable = True


class UpstreamRejectedError(UpstreamError):
    """The upstream understood the request and refused it (4xx or per-record error code)."""


class UpstreamAuthError(UpstreamError):
    """Credentials were refused or could not be obtained."""


class BatchFailure(LexSyncError):
    """An unexpected error aborted a whole batch."""

    def __init__(self, batch_index: int, cause: BaseException):
        self.batch_index = batch_index
        self.cause = cause
        super().__init__(f"Batch {batch_index} aborted: {cause}")


def describe_error(exc: BaseException) -> dict[str, Any]:
    """Serializable description used in results and the failed-operation queue."""
    if isinstance(exc, UpstreamError):
        return exc.to_dict()
    return {"type": type(exc).__name__, "message": str(exc)}


__all__ = [
    "LexSyncError",
    "ValidationError",
    "FatalConfigurationError",
    "UpstreamError",
    "UpstreamNotFound",
    "UpstreamTransientError",
    "UpstreamRejectedError",
    "UpstreamAuthError",
    "BatchFailure",
    "describe_error",
]
