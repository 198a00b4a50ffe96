"""Webhook event persistence and read path.

Events are append-only: there is no update or delete. Writes are
conditional on the event id being absent, so a redelivered queue message
resolves to a no-op instead of a second record.
"""

from __future__ import annotations

import logging

from statusbot.deadline import Deadline
from statusbot.errors import NotFoundError
from statusbot.models import WEBHOOK_ITEM_TYPE, InboundEvent, full_webhook_id
from statusbot.storage.batch import BatchWriter
from statusbot.storage.protocol import StorageClient

logger = logging.getLogger(__name__)

_QUERY_PAGE_SIZE = 100


class WebhookEventStore:
    """Persists InboundEvents through the batched writer (single-item path)."""

    def __init__(self, client: StorageClient, table: str, writer: BatchWriter | None = None) -> None:
        self._client = client
        self._table = table
        self._writer = writer or BatchWriter(client)

    def create(self, event: InboundEvent, deadline: Deadline | None = None) -> InboundEvent:
        """Store ``event``. Returns the event as stored."""
        if not event.id:
            # Pre-identity messages cannot be deduplicated on redelivery
            logger.warning("Webhook event without id (type=%s), assigning one", event.type)
        event = event.with_identity()
        self._writer.batch_write(self._table, [event], deadline, if_absent=True)
        return event

    def get_event(self, event_id: str) -> InboundEvent:
        """Fetch one event by full (``webhook#abc``) or short (``abc``) id."""
        item = self._client.get_item(self._table, full_webhook_id(event_id))
        if item is None or item.get("item_type") != WEBHOOK_ITEM_TYPE:
            raise NotFoundError("webhook event", event_id)
        return InboundEvent.from_dict(item)

    def list_events(self, event_type: str = "", source: str = "") -> list[InboundEvent]:
        """All stored events, optionally filtered by type and/or source."""
        events: list[InboundEvent] = []
        cursor: str | None = None
        while True:
            page = self._client.query(self._table, WEBHOOK_ITEM_TYPE, cursor=cursor, limit=_QUERY_PAGE_SIZE)
            for item in page.items:
                if event_type and item.get("type") != event_type:
                    continue
                if source and item.get("source") != source:
                    continue
                events.append(InboundEvent.from_dict(item))
            if page.next_cursor is None:
                return events
            cursor = page.next_cursor
