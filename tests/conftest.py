"""Shared fixtures: in-memory storage and queue doubles.

InMemoryStorage satisfies StorageClient. Its ``script`` list drives
batch_write failures call by call:
- int K     -> the last K requests of that call come back unprocessed
- Exception -> raised from that call
Calls past the end of the script succeed.
"""

from __future__ import annotations

import time
from typing import Any

import pytest

from statusbot.errors import QueueSendError
from statusbot.models import BatchWriteResult, Page, QueueMessage, WriteRequest
from statusbot.storage.batch import BatchWriter


class InMemoryStorage:
    """Dict-backed StorageClient with scripted batch_write failures."""

    def __init__(self) -> None:
        self.records: dict[tuple[str, str], dict[str, Any]] = {}
        self.expiry: dict[tuple[str, str], int] = {}
        self.batch_calls: list[list[WriteRequest]] = []
        self.script: list[Any] = []

    def _live(self, table: str, key: str) -> dict[str, Any] | None:
        expires_at = self.expiry.get((table, key))
        if expires_at is not None and time.time() >= expires_at:
            self.records.pop((table, key), None)
            self.expiry.pop((table, key), None)
        return self.records.get((table, key))

    def _apply(self, table: str, request: WriteRequest) -> bool:
        if request.if_absent and self._live(table, request.key) is not None:
            return False
        self.records[(table, request.key)] = dict(request.item)
        if request.expires_at is not None:
            self.expiry[(table, request.key)] = request.expires_at
        return True

    def batch_write(self, table: str, requests: list[WriteRequest]) -> BatchWriteResult:
        self.batch_calls.append(list(requests))
        step = self.script.pop(0) if self.script else 0
        if isinstance(step, Exception):
            raise step
        cut = len(requests) - step
        for request in requests[:cut]:
            self._apply(table, request)
        return BatchWriteResult(unprocessed=list(requests[cut:]))

    def get_item(self, table: str, key: str) -> dict[str, Any] | None:
        return self._live(table, key)

    def put_item(self, table: str, request: WriteRequest) -> bool:
        return self._apply(table, request)

    def delete_item(self, table: str, key: str) -> None:
        self.records.pop((table, key), None)
        self.expiry.pop((table, key), None)

    def query(self, table: str, item_type: str, *, cursor: str | None = None, limit: int = 100) -> Page:
        keys = [k for (t, k), item in list(self.records.items()) if t == table and item.get("item_type") == item_type]
        start = int(cursor) if cursor else 0
        window = keys[start : start + limit]
        items = [self._live(table, k) for k in window]
        next_cursor = str(start + limit) if len(window) == limit else None
        return Page(items=[i for i in items if i is not None], next_cursor=next_cursor)

    def count(self, table: str, item_type: str) -> int:
        return sum(1 for (t, _), item in self.records.items() if t == table and item.get("item_type") == item_type)


class InMemoryQueue:
    """QueueClient that records sent messages."""

    def __init__(self) -> None:
        self.messages: list[QueueMessage] = []
        self.fail: Exception | None = None

    def send_message(self, body: str) -> str:
        if self.fail is not None:
            raise self.fail
        message_id = f"{len(self.messages) + 1}-0"
        self.messages.append(QueueMessage(message_id=message_id, body=body))
        return message_id


@pytest.fixture()
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture()
def queue() -> InMemoryQueue:
    return InMemoryQueue()


@pytest.fixture()
def writer(storage: InMemoryStorage) -> BatchWriter:
    """Writer with zero backoff so retry tests do not sleep."""
    return BatchWriter(storage, base_delay=0.0)


@pytest.fixture()
def queue_failure() -> QueueSendError:
    return QueueSendError("queue send failed: throttled")
