"""Redis-backed StorageClient.

Layout:
- record:  ``{table}:{id}`` -> JSON string (SET, optional NX / EXAT)
- index:   ``{table}:idx:{item_type}`` -> sorted set of ids scored by first write time

Batch writes go through a non-transactional pipeline executed with
``raise_on_error=False``; a command that comes back as an exception marks its
record unprocessed, so the caller retries only those. Connection-level
failures surface as RetryableStorageError.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import redis

from statusbot.errors import FatalStorageError, RetryableStorageError
from statusbot.models import BatchWriteResult, Page, WriteRequest

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (redis.ConnectionError, redis.TimeoutError, redis.BusyLoadingError)


class RedisStorage:
    """StorageClient over a ``redis.Redis`` connection (decode_responses=True)."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> RedisStorage:
        return cls(redis.from_url(url, decode_responses=True))

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @staticmethod
    def record_key(table: str, key: str) -> str:
        return f"{table}:{key}"

    @staticmethod
    def index_key(table: str, item_type: str) -> str:
        return f"{table}:idx:{item_type}"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _queue_write(self, pipe: Any, table: str, request: WriteRequest) -> int:
        """Add the commands for one request to ``pipe``. Returns command count."""
        pipe.set(
            self.record_key(table, request.key),
            json.dumps(request.item, separators=(",", ":")),
            nx=request.if_absent,
            exat=request.expires_at,
        )
        item_type = request.item.get("item_type")
        if not item_type:
            return 1
        pipe.zadd(self.index_key(table, item_type), {request.key: time.time()}, nx=True)
        return 2

    def batch_write(self, table: str, requests: list[WriteRequest]) -> BatchWriteResult:
        if not requests:
            return BatchWriteResult()
        pipe = self._redis.pipeline(transaction=False)
        spans = [self._queue_write(pipe, table, r) for r in requests]
        try:
            results = pipe.execute(raise_on_error=False)
        except _TRANSIENT_ERRORS as exc:
            raise RetryableStorageError(f"redis pipeline: {exc}") from exc
        except redis.RedisError as exc:
            raise FatalStorageError(f"redis pipeline: {exc}", item_ids=[r.key for r in requests]) from exc

        unprocessed: list[WriteRequest] = []
        pos = 0
        for request, span in zip(requests, spans):
            outcome = results[pos : pos + span]
            pos += span
            if any(isinstance(o, Exception) for o in outcome):
                logger.debug("Unprocessed write %s: %s", request.key, outcome)
                unprocessed.append(request)
        return BatchWriteResult(unprocessed=unprocessed)

    def put_item(self, table: str, request: WriteRequest) -> bool:
        pipe = self._redis.pipeline(transaction=True)
        self._queue_write(pipe, table, request)
        try:
            results = pipe.execute()
        except _TRANSIENT_ERRORS as exc:
            raise RetryableStorageError(f"redis put {request.key}: {exc}") from exc
        except redis.RedisError as exc:
            raise FatalStorageError(f"redis put {request.key}: {exc}", item_ids=[request.key]) from exc
        return bool(results[0])

    def delete_item(self, table: str, key: str) -> None:
        try:
            self._redis.delete(self.record_key(table, key))
        except _TRANSIENT_ERRORS as exc:
            raise RetryableStorageError(f"redis delete {key}: {exc}") from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_item(self, table: str, key: str) -> dict[str, Any] | None:
        try:
            raw = self._redis.get(self.record_key(table, key))
        except _TRANSIENT_ERRORS as exc:
            raise RetryableStorageError(f"redis get {key}: {exc}") from exc
        if raw is None:
            return None
        return json.loads(raw)

    def query(
        self,
        table: str,
        item_type: str,
        *,
        cursor: str | None = None,
        limit: int = 100,
    ) -> Page:
        start = int(cursor) if cursor else 0
        try:
            keys = self._redis.zrange(self.index_key(table, item_type), start, start + limit - 1)
            raws = self._redis.mget([self.record_key(table, k) for k in keys]) if keys else []
        except _TRANSIENT_ERRORS as exc:
            raise RetryableStorageError(f"redis query {item_type}: {exc}") from exc

        # Expired records drop out of the keyspace but linger in the index
        items = [json.loads(raw) for raw in raws if raw is not None]
        next_cursor = str(start + limit) if len(keys) == limit else None
        return Page(items=items, next_cursor=next_cursor)
