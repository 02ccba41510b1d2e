"""
Типизированные ошибки синхронизации.

Каждая ошибка несёт:
- code: машинный код (NOT_FOUND, READ_ERROR, ...)
- kind: класс для UI-слоя (unauthorized / not-found / bad-request / conflict / internal)
- status_code: HTTP статус, который вернёт API

SourceReader и BackupManager поднимают эти ошибки, SyncCoordinator ловит всё,
финализирует историю и пробрасывает дальше уже типизированную ошибку.
"""

import asyncio

from fastapi import status


class SyncError(Exception):
    """Base class for every sync engine error."""

    code = "INTERNAL_ERROR"
    kind = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: list[dict] | None = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        """Serialize for API responses and history rows."""
        return {"code": self.code, "kind": self.kind, "message": self.message}


class AuthError(SyncError):
    """Authentication failed or is not configured (SSH credentials, access)."""

    code = "UNAUTHORIZED"
    kind = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED


class AccessDeniedError(AuthError):
    """User is not allowed to touch this project."""

    code = "ACCESS_DENIED"
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(SyncError):
    """Project, backup, conflict or tasks file does not exist."""

    code = "NOT_FOUND"
    kind = "not-found"
    status_code = status.HTTP_404_NOT_FOUND


class ReadError(SyncError):
    """Source is malformed or unreadable."""

    code = "READ_ERROR"
    kind = "bad-request"
    status_code = status.HTTP_400_BAD_REQUEST


class SyncTimeoutError(ReadError):
    """Remote read did not finish in time. Treated exactly like ReadError."""

    code = "TIMEOUT"


class WriteError(SyncError):
    """Disk or permission failure while writing the target."""

    code = "WRITE_ERROR"


class ConflictError(SyncError):
    """Irreconcilable edits under the strict conflict policy."""

    code = "CONFLICT"
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class ValidationError(SyncError):
    """Malformed request."""

    code = "VALIDATION_ERROR"
    kind = "bad-request"
    status_code = status.HTTP_400_BAD_REQUEST


class AlreadyRunningError(SyncError):
    """A sync for the same project and target is already in flight."""

    code = "ALREADY_RUNNING"
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class SyncCancelledError(SyncError):
    """Sync was interrupted (client went away or the server is shutting down)."""

    code = "CANCELLED"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def as_sync_error(exc: BaseException) -> SyncError:
    """Wrap an unexpected exception so callers never see a raw internal trace."""
    if isinstance(exc, SyncError):
        return exc
    if isinstance(exc, asyncio.CancelledError):
        return SyncCancelledError("Sync was cancelled before it finished")
    return SyncError(f"Internal sync failure ({type(exc).__name__})")
