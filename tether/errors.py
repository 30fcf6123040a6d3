"""Error taxonomy shared by the sync engine, the stores, and the API."""

from __future__ import annotations

from typing import Any, Dict, Optional


class SyncError(RuntimeError):
    """Base class for errors the engine surfaces to callers."""

    code = "internal"
    http_status = 500
    retryable = False

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or str(self.args[0])
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidArgument(SyncError):
    """Malformed operation type, strategy, or missing required field."""

    code = "invalid-argument"
    http_status = 400


class QueueFull(SyncError):
    """Sync queue is full. Please try again later."""

    code = "sync-queue-full"
    http_status = 429


class NotFound(SyncError):
    """The requested resource was not found."""

    code = "not-found"
    http_status = 404


class VersionConflict(SyncError):
    """Version conflict detected."""

    code = "version-conflict"
    http_status = 409

    def __init__(self, message: str = "", conflict: Optional[Any] = None, **details: Any) -> None:
        super().__init__(message, **details)
        self.conflict = conflict


class TransientStoreError(SyncError):
    """The document store is temporarily unavailable."""

    code = "unavailable"
    http_status = 503
    retryable = True


def is_retryable(exc: BaseException) -> bool:
    """Return True when a failed apply should be retried on a later pass."""

    if isinstance(exc, SyncError):
        return exc.retryable
    # Timeouts and unexpected errors may or may not have landed; retry them.
    return True


__all__ = [
    "SyncError",
    "InvalidArgument",
    "QueueFull",
    "NotFound",
    "VersionConflict",
    "TransientStoreError",
    "is_retryable",
]
