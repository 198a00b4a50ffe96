"""Error taxonomy for the write path.

Every failure raised by the authenticator, publisher, consumer, writer or
idempotency store is a ``WritePathError`` carrying an ``ErrorKind`` so that
boundaries (HTTP handlers, the queue worker, the import CLI) can decide how
to react without string matching.
"""

from __future__ import annotations

from enum import Enum

__all__ = [
    "AuthError",
    "CancellationError",
    "ErrorKind",
    "FatalStorageError",
    "MarshalError",
    "NotFoundError",
    "QueueSendError",
    "RetryableStorageError",
    "ValidationError",
    "WritePathError",
]


class ErrorKind(Enum):
    """Error classification."""

    AUTH = "auth"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    RETRYABLE = "retryable"
    FATAL = "fatal"
    CANCELLED = "cancelled"
    QUEUE = "queue"


class WritePathError(Exception):
    """Base exception for write-path failures."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.FATAL) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind


class AuthError(WritePathError):
    """Bad or missing webhook signature, or no secret configured."""

    def __init__(self, message: str = "invalid webhook signature") -> None:
        super().__init__(message, ErrorKind.AUTH)


class ValidationError(WritePathError):
    """Malformed input. Never retried."""

    def __init__(self, message: str, field: str = "") -> None:
        super().__init__(message, ErrorKind.VALIDATION)
        self.field = field

    def __str__(self) -> str:
        if self.field:
            return f"validation: {self.field} {self.message}"
        return f"validation: {self.message}"


class MarshalError(ValidationError):
    """A record could not be converted to its storage representation."""

    def __init__(self, message: str, record_id: str = "") -> None:
        super().__init__(message, field="record")
        self.record_id = record_id


class NotFoundError(WritePathError):
    """A requested resource does not exist."""

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} {resource_id!r} not found", ErrorKind.NOT_FOUND)
        self.resource = resource
        self.resource_id = resource_id


class RetryableStorageError(WritePathError):
    """Transient storage failure (throttling, connection reset)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorKind.RETRYABLE)


class FatalStorageError(WritePathError):
    """A chunk could not be committed.

    ``reason`` is ``"exhausted"`` when retries ran out with items still
    unprocessed and ``"rejected"`` when the storage engine refused the call.
    """

    def __init__(
        self,
        message: str,
        *,
        chunk_offset: int | None = None,
        item_ids: list[str] | None = None,
        attempts: int = 0,
        reason: str = "rejected",
    ) -> None:
        super().__init__(message, ErrorKind.FATAL)
        self.chunk_offset = chunk_offset
        self.item_ids = list(item_ids or [])
        self.attempts = attempts
        self.reason = reason

    def __str__(self) -> str:
        if self.chunk_offset is None:
            return self.message
        return f"batch write at offset {self.chunk_offset}: {self.message}"


class CancellationError(WritePathError):
    """The caller's deadline passed or the caller cancelled."""

    def __init__(self, message: str = "operation cancelled", chunk_offset: int | None = None) -> None:
        super().__init__(message, ErrorKind.CANCELLED)
        self.chunk_offset = chunk_offset


class QueueSendError(WritePathError):
    """The durable queue did not accept a message."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorKind.QUEUE)
