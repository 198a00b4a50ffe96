"""Webhook HTTP handlers: FastAPI routes for inbound webhook events.

POST /v1/webhooks:
1. Reads raw body (needed for HMAC verification)
2. Rejects if no secret is configured (500, fail-closed)
3. Verifies x-webhook-signature (401 on failure)
4. Replays a cached outcome for a repeated x-idempotency-key
5. Parses and validates JSON (400 on failure, NaN/Infinity included)
6. Publishes to the durable queue and returns 201 (500 if the queue refuses)

Security contract:
- Never return error details to the webhook caller
- Signature is checked before the body is parsed
- Signature is checked before any cached outcome is replayed
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import json
import logging
import time

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from statusbot.errors import CancellationError, NotFoundError, QueueSendError
from statusbot.idempotency import (
    IDEMPOTENCY_HEADER,
    IDEMPOTENCY_TTL_SECONDS,
    IdempotencyStore,
    run_idempotent,
    scoped_key,
)
from statusbot.models import WebhookPayload
from statusbot.webhooks.publisher import EventPublisher, new_event
from statusbot.webhooks.store import WebhookEventStore
from statusbot.webhooks.verification import verify_webhook

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/v1/webhooks"


def _reject_constant(name: str) -> None:
    raise ValueError(f"non-finite number {name} is not valid JSON")


def _log_webhook(event_type: str, event_id: str, status: str) -> None:
    """Audit log for webhook activity."""
    logger.info("WEBHOOK_AUDIT event=%s id=%s status=%s", event_type, event_id, status)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def register_webhook_routes(
    app: FastAPI,
    *,
    secret: str,
    publisher: EventPublisher | None,
    store: WebhookEventStore | None = None,
    api_key: str = "",
    idempotency: IdempotencyStore | None = None,
    idempotency_ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS,
) -> None:
    """Register webhook routes on ``app``.

    ``secret`` empty means unconfigured: every POST is rejected. With
    ``idempotency`` set, a signed POST carrying ``x-idempotency-key`` is
    executed at most once per key. The read routes are only registered
    when ``store`` is given and require ``x-api-key`` when ``api_key`` is set.
    """

    async def accept(body: bytes, start: float) -> JSONResponse:
        try:
            parsed = WebhookPayload.model_validate(json.loads(body, parse_constant=_reject_constant))
        except (ValueError, PydanticValidationError):
            _log_webhook("unknown", "", "invalid_json")
            return _error(400, "invalid JSON body")

        if publisher is None:
            logger.error("Webhook publisher not configured")
            return _error(500, "internal server error")

        event = new_event(parsed.type, parsed.source, parsed.payload)
        try:
            publisher.publish(event)
        except (QueueSendError, CancellationError):
            _log_webhook(event.type, event.id, "publish_failed")
            return _error(500, "internal server error")

        _log_webhook(event.type, event.id, "queued")
        logger.debug("Webhook accepted in %.1fms: %s", (time.time() - start) * 1000, event.id)
        return JSONResponse({"ok": True, "id": event.id}, status_code=201)

    @app.post(WEBHOOK_PATH)
    async def receive_webhook(request: Request):
        """Receive a signed webhook and enqueue it."""
        start = time.time()
        body = await request.body()

        if not secret:
            _log_webhook("unknown", "", "secret_unconfigured")
            return _error(500, "webhook secret not configured")

        if not verify_webhook(body, request.headers, secret):
            _log_webhook("unknown", "", "signature_failed")
            return _error(401, "invalid webhook signature")

        token = request.headers.get(IDEMPOTENCY_HEADER)
        if idempotency is None or not token:
            return await accept(body, start)
        return await run_idempotent(
            idempotency,
            scoped_key(WEBHOOK_PATH, token),
            lambda: accept(body, start),
            ttl_seconds=idempotency_ttl_seconds,
        )

    if store is None:
        logger.info("Webhook routes registered: POST /v1/webhooks")
        return

    def _authorized(provided: str | None) -> bool:
        return not api_key or provided == api_key

    @app.get("/v1/webhooks")
    async def list_webhooks(
        type: str = "",
        source: str = "",
        x_api_key: str | None = Header(default=None),
    ):
        """List stored webhook events, optionally filtered."""
        if not _authorized(x_api_key):
            return _error(401, "unauthorized")
        events = store.list_events(event_type=type, source=source)
        return JSONResponse([e.to_dict() for e in events])

    @app.get("/v1/webhooks/{event_id}")
    async def get_webhook(event_id: str, x_api_key: str | None = Header(default=None)):
        """Fetch one stored webhook event (full or short id)."""
        if not _authorized(x_api_key):
            return _error(401, "unauthorized")
        try:
            event = store.get_event(event_id)
        except NotFoundError:
            return _error(404, "not found")
        return JSONResponse(event.to_dict())

    logger.info("Webhook routes registered: POST/GET /v1/webhooks, GET /v1/webhooks/{id}")
