"""Capability interfaces for the storage engine and the durable queue.

Only the operations the write path actually uses are declared, so a test
double can satisfy them without a network stack. Production adapters live
in ``statusbot.storage.redis_store`` and ``statusbot.bus``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import Any

    from statusbot.models import BatchWriteResult, Page, WriteRequest


@runtime_checkable
class StorageClient(Protocol):
    """Key/value store with conditional batch-write and point/range queries.

    ``batch_write`` must not raise for items it merely failed to commit;
    those come back in ``BatchWriteResult.unprocessed``. Transient failures
    of the whole call raise ``RetryableStorageError``; anything else is a
    rejection.

    A request with ``if_absent=True`` whose key already holds a live record
    is a successful no-op, not an unprocessed item.
    """

    def batch_write(self, table: str, requests: list[WriteRequest]) -> BatchWriteResult: ...

    def get_item(self, table: str, key: str) -> dict[str, Any] | None: ...

    def put_item(self, table: str, request: WriteRequest) -> bool:
        """Write one record. Returns False when ``if_absent`` found a live record."""
        ...

    def delete_item(self, table: str, key: str) -> None: ...

    def query(
        self,
        table: str,
        item_type: str,
        *,
        cursor: str | None = None,
        limit: int = 100,
    ) -> Page: ...


@runtime_checkable
class QueueClient(Protocol):
    """At-least-once delivery channel."""

    def send_message(self, body: str) -> str:
        """Enqueue ``body`` and return the delivery system's message id."""
        ...
