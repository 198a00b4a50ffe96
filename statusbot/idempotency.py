"""Idempotency key store and HTTP middleware for mutating requests.

Security contract:
- Keys are scoped by route: ``idem#{path}#{token}``, so unrelated
  operations cannot collide on the same caller token
- First successful outcome wins and is replayed verbatim until expiry
- Records past expires_at are a miss even before the storage engine evicts them,
  and the next successful outcome replaces them
- Authenticated routes run the lookup after authentication, never before
- Lookup/store failures fail open (the request executes, a warning is logged)
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable, Collection

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from statusbot.models import IdempotencyRecord, WriteRequest, utc_timestamp
from statusbot.storage.protocol import StorageClient

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "x-idempotency-key"
REPLAYED_HEADER = "x-idempotency-replayed"
IDEMPOTENCY_TTL_SECONDS = 86400  # 24 hours
LOCK_TTL_SECONDS = 30

_KEY_PREFIX = "idem"


def scoped_key(route: str, token: str) -> str:
    """Storage key for a caller token on a given route."""
    return f"{_KEY_PREFIX}#{route}#{token}"


class IdempotencyStore:
    """Caches the first successful response for each scoped key."""

    def __init__(
        self,
        client: StorageClient,
        table: str,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._client = client
        self._table = table
        self._clock = clock

    def _now(self) -> float:
        return self._clock() if self._clock is not None else time.time()

    def get(self, key: str) -> IdempotencyRecord | None:
        """Return the cached record, or None on miss or expiry."""
        item = self._client.get_item(self._table, key)
        if item is None:
            return None
        record = IdempotencyRecord.from_item(item)
        if record.is_expired(self._now()):
            logger.debug("Idempotency record expired for %s", key)
            return None
        logger.info("Idempotency cache HIT for %s", key)
        return record

    def put(self, key: str, status_code: int, body: str, ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS) -> IdempotencyRecord:
        """Store an outcome under ``key``.

        The write is conditional: if a live record already exists it is
        left untouched and returned as the canonical response.
        """
        now = self._now()
        record = IdempotencyRecord(
            key=key,
            status_code=status_code,
            body=body,
            created_at=utc_timestamp(now),
            expires_at=int(now) + ttl_seconds,
        )
        request = WriteRequest(key=key, item=record.to_item(), if_absent=True, expires_at=record.expires_at)
        if self._client.put_item(self._table, request):
            logger.info("Idempotency cache SET for %s (TTL=%ds)", key, ttl_seconds)
            return record
        existing = self.get(key)
        if existing is not None:
            return existing
        # Expired record not yet evicted: replace it
        self._client.put_item(self._table, dataclasses.replace(request, if_absent=False))
        logger.info("Idempotency cache RESET for %s (TTL=%ds)", key, ttl_seconds)
        return record

    def acquire(self, key: str, lock_ttl: int = LOCK_TTL_SECONDS) -> bool:
        """Take the in-flight lock for ``key``. False if another call holds it."""
        expires_at = int(self._now()) + lock_ttl
        lock_key = f"{key}#lock"
        request = WriteRequest(
            key=lock_key,
            item={"id": lock_key, "expires_at": expires_at},
            if_absent=True,
            expires_at=expires_at,
        )
        return self._client.put_item(self._table, request)

    def release(self, key: str) -> None:
        self._client.delete_item(self._table, f"{key}#lock")


def _replay(record: IdempotencyRecord) -> Response:
    return Response(
        content=record.body,
        status_code=record.status_code,
        media_type="application/json",
        headers={REPLAYED_HEADER: "true"},
    )


async def run_idempotent(
    store: IdempotencyStore,
    key: str,
    execute: Callable[[], Awaitable[Response]],
    *,
    ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS,
    lock_ttl_seconds: int = LOCK_TTL_SECONDS,
) -> Response:
    """Run ``execute`` at most once per live ``key``.

    ``execute`` must return a fully buffered Response (``.body`` set). A
    cached outcome is replayed instead of executing; a concurrent first call
    gets 409. When another call stored an outcome first, that canonical
    outcome is returned instead of this call's own.
    """
    try:
        record = store.get(key)
    except Exception:
        logger.warning("Idempotency lookup failed for %s", key, exc_info=True)
        record = None
    if record is not None:
        return _replay(record)

    try:
        acquired = store.acquire(key, lock_ttl_seconds)
    except Exception:
        logger.warning("Idempotency lock failed for %s", key, exc_info=True)
        acquired = True
    if not acquired:
        logger.info("Idempotency key in flight: %s", key)
        return JSONResponse({"error": "request with this idempotency key is in progress"}, status_code=409)

    try:
        response = await execute()
        if 200 <= response.status_code < 300:
            body = response.body.decode("utf-8", errors="replace")
            try:
                stored = store.put(key, response.status_code, body, ttl_seconds)
            except Exception:
                logger.warning("Failed to store idempotency record for %s", key, exc_info=True)
            else:
                if (stored.status_code, stored.body) != (response.status_code, body):
                    logger.info("Idempotency race lost for %s, returning stored outcome", key)
                    return _replay(stored)
    finally:
        try:
            store.release(key)
        except Exception:
            logger.warning("Idempotency lock release failed for %s", key, exc_info=True)
    return response


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """Replays cached responses for POST requests carrying an idempotency key.

    Paths in ``exclude_paths`` pass straight through; their routes apply
    ``run_idempotent`` themselves once the caller is authenticated.
    """

    def __init__(
        self,
        app: ASGIApp,
        store: IdempotencyStore,
        ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS,
        lock_ttl_seconds: int = LOCK_TTL_SECONDS,
        exclude_paths: Collection[str] = (),
    ) -> None:
        super().__init__(app)
        self._store = store
        self._ttl = ttl_seconds
        self._lock_ttl = lock_ttl_seconds
        self._exclude = frozenset(exclude_paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        token = request.headers.get(IDEMPOTENCY_HEADER)
        if request.method != "POST" or not token or request.url.path in self._exclude:
            return await call_next(request)

        async def execute() -> Response:
            response = await call_next(request)
            body = b"".join([chunk async for chunk in response.body_iterator])
            return Response(
                content=body,
                status_code=response.status_code,
                headers=dict(response.headers),
                media_type=response.media_type,
            )

        return await run_idempotent(
            self._store,
            scoped_key(request.url.path, token),
            execute,
            ttl_seconds=self._ttl,
            lock_ttl_seconds=self._lock_ttl,
        )
