"""Chunked, retrying bulk writer.

Used by the event consumer (one record at a time) and by bulk import tools
(thousands of records). Records are marshaled up front, split into chunks of
at most BATCH_WRITE_MAX_ITEMS, and each chunk is written with bounded retry
of only the items the storage engine reports as unprocessed.

Backoff: base_delay * 2**attempt (100ms, 200ms, ... 1600ms), 5 retries.
Every sleep observes the caller's Deadline.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from statusbot.deadline import Deadline, ensure_deadline
from statusbot.errors import (
    CancellationError,
    FatalStorageError,
    MarshalError,
    RetryableStorageError,
)
from statusbot.models import BATCH_WRITE_MAX_ITEMS, WriteRequest
from statusbot.storage.protocol import StorageClient

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY = 0.1


@dataclass
class BatchWriteReport:
    """What a batch_write run committed."""

    written: int = 0
    calls: int = 0
    failed_offsets: list[int] = field(default_factory=list)
    errors: list[FatalStorageError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_offsets


def backoff_delay(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Delay before retry number ``attempt + 1``."""
    return base_delay * (2**attempt)


def chunked(items: Sequence[WriteRequest], size: int = BATCH_WRITE_MAX_ITEMS) -> Iterator[tuple[int, list[WriteRequest]]]:
    """Yield (offset, chunk) pairs with at most ``size`` items per chunk."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for offset in range(0, len(items), size):
        yield offset, list(items[offset : offset + size])


def marshal_record(
    record: Any,
    *,
    if_absent: bool = False,
    expires_at: int | None = None,
) -> WriteRequest:
    """Convert a domain record into a WriteRequest.

    Accepts objects exposing ``to_item()``, dataclass instances, and
    mappings. The item must carry a non-empty string ``id`` and be JSON
    serialisable.
    """
    if hasattr(record, "to_item"):
        item = record.to_item()
    elif dataclasses.is_dataclass(record) and not isinstance(record, type):
        item = dataclasses.asdict(record)
    elif isinstance(record, Mapping):
        item = dict(record)
    else:
        raise MarshalError(f"unsupported record type {type(record).__name__}")

    record_id = item.get("id")
    if not isinstance(record_id, str) or not record_id:
        raise MarshalError("record has no id", record_id=str(record_id or ""))

    try:
        json.dumps(item, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise MarshalError(f"marshal {record_id}: {exc}", record_id=record_id) from exc

    return WriteRequest(key=record_id, item=item, if_absent=if_absent, expires_at=expires_at)


class BatchWriter:
    """Writes records to a StorageClient in bounded, retried chunks."""

    def __init__(
        self,
        client: StorageClient,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        chunk_size: int = BATCH_WRITE_MAX_ITEMS,
    ) -> None:
        if not 0 < chunk_size <= BATCH_WRITE_MAX_ITEMS:
            raise ValueError(f"chunk_size must be between 1 and {BATCH_WRITE_MAX_ITEMS}")
        self._client = client
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.chunk_size = chunk_size

    def batch_write(
        self,
        table: str,
        records: Iterable[Any],
        deadline: Deadline | None = None,
        *,
        if_absent: bool = False,
        stop_on_error: bool = True,
    ) -> BatchWriteReport:
        """Write ``records`` to ``table``.

        Raises MarshalError before any storage call if a record cannot be
        marshaled, CancellationError when the deadline passes, and
        FatalStorageError for the first chunk that cannot be committed
        (unless ``stop_on_error`` is False, in which case failed chunk
        offsets are collected in the report and later chunks still run).
        """
        deadline = ensure_deadline(deadline)
        requests = [marshal_record(r, if_absent=if_absent) for r in records]
        report = BatchWriteReport()
        if not requests:
            return report

        for offset, chunk in chunked(requests, self.chunk_size):
            try:
                report.calls += self._write_chunk(table, offset, chunk, deadline)
            except CancellationError as exc:
                exc.chunk_offset = offset
                raise
            except FatalStorageError as exc:
                exc.chunk_offset = offset
                if stop_on_error:
                    raise
                logger.error("Chunk at offset %d failed: %s", offset, exc)
                report.failed_offsets.append(offset)
                report.errors.append(exc)
                report.calls += exc.attempts
                continue
            report.written += len(chunk)

        return report

    def _write_chunk(
        self,
        table: str,
        offset: int,
        chunk: list[WriteRequest],
        deadline: Deadline,
    ) -> int:
        """Write one chunk, retrying unprocessed items. Returns calls made."""
        remaining = chunk
        calls = 0
        for attempt in range(self.max_retries + 1):
            deadline.check()
            calls += 1
            try:
                result = self._client.batch_write(table, remaining)
                unprocessed = list(result.unprocessed)
            except RetryableStorageError as exc:
                logger.warning(
                    "Transient storage failure at offset %d (attempt %d): %s",
                    offset,
                    attempt + 1,
                    exc,
                )
                unprocessed = remaining
            except (CancellationError, FatalStorageError):
                raise
            except Exception as exc:
                raise FatalStorageError(
                    f"storage rejected batch write: {exc}",
                    chunk_offset=offset,
                    item_ids=[r.key for r in remaining],
                    attempts=calls,
                    reason="rejected",
                ) from exc

            if not unprocessed:
                return calls

            if attempt < self.max_retries:
                delay = backoff_delay(attempt, self.base_delay)
                logger.warning(
                    "Retry %d/%d for chunk at offset %d (%d unprocessed), waiting %.2fs",
                    attempt + 1,
                    self.max_retries,
                    offset,
                    len(unprocessed),
                    delay,
                )
                deadline.sleep(delay)
            remaining = unprocessed

        raise FatalStorageError(
            f"still have {len(remaining)} unprocessed items after {self.max_retries} retries",
            chunk_offset=offset,
            item_ids=[r.key for r in remaining],
            attempts=calls,
            reason="exhausted",
        )
