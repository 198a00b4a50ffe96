"""FastAPI app factory for the webhook ingest API.

Usage:
    uvicorn statusbot.serve:create_app_from_settings --factory
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from statusbot.bus import RedisStreamQueue
from statusbot.config import Settings, configure_logging
from statusbot.idempotency import IDEMPOTENCY_TTL_SECONDS, IdempotencyMiddleware, IdempotencyStore
from statusbot.storage.protocol import QueueClient, StorageClient
from statusbot.storage.redis_store import RedisStorage
from statusbot.webhooks.handlers import WEBHOOK_PATH, register_webhook_routes
from statusbot.webhooks.publisher import EventPublisher
from statusbot.webhooks.store import WebhookEventStore

logger = logging.getLogger(__name__)


def create_app(
    *,
    storage: StorageClient,
    queue: QueueClient,
    table: str,
    webhook_secret: str,
    api_key: str = "",
    idempotency_ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS,
) -> FastAPI:
    """Build the app from explicit dependencies."""
    app = FastAPI(title="statusbot")

    idempotency = IdempotencyStore(storage, table)
    register_webhook_routes(
        app,
        secret=webhook_secret,
        publisher=EventPublisher(queue),
        store=WebhookEventStore(storage, table),
        api_key=api_key,
        idempotency=idempotency,
        idempotency_ttl_seconds=idempotency_ttl_seconds,
    )
    # Webhook POSTs are checked after signature verification, inside the route
    app.add_middleware(
        IdempotencyMiddleware,
        store=idempotency,
        ttl_seconds=idempotency_ttl_seconds,
        exclude_paths=(WEBHOOK_PATH,),
    )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


def create_app_from_settings(settings: Settings | None = None) -> FastAPI:
    """Build the app with Redis-backed storage and queue."""
    settings = settings or Settings()
    configure_logging(settings.log_level)
    if not settings.webhook_secret:
        logger.warning("WEBHOOK_SECRET not set, all webhook POSTs will be rejected")

    storage = RedisStorage.from_url(settings.redis_url)
    queue = RedisStreamQueue.from_url(
        settings.redis_url,
        stream=settings.queue_stream,
        group=settings.consumer_group,
        dead_letter_stream=settings.dead_letter_stream,
        max_deliveries=settings.max_deliveries,
    )
    return create_app(
        storage=storage,
        queue=queue,
        table=settings.table_name,
        webhook_secret=settings.webhook_secret,
        api_key=settings.api_key,
        idempotency_ttl_seconds=settings.idempotency_ttl_seconds,
    )
