"""Event consumer with partial-batch-failure reporting.

Each delivered message is decoded and persisted independently. A message
that fails either step is reported by its message id and the rest of the
batch carries on, so one poison message never blocks the others. Only a
batch that cannot be examined at all raises.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from statusbot.deadline import Deadline
from statusbot.errors import ValidationError, WritePathError
from statusbot.models import InboundEvent, QueueMessage
from statusbot.webhooks.store import WebhookEventStore

logger = logging.getLogger(__name__)


@dataclass
class BatchItemFailure:
    item_identifier: str

    def to_dict(self) -> dict[str, str]:
        return {"itemIdentifier": self.item_identifier}


@dataclass
class BatchResponse:
    """Failed message ids. Absence of an id means that message succeeded."""

    failures: list[BatchItemFailure] = field(default_factory=list)

    @property
    def failed_ids(self) -> list[str]:
        return [f.item_identifier for f in self.failures]

    def to_dict(self) -> dict[str, Any]:
        return {"batchItemFailures": [f.to_dict() for f in self.failures]}


def messages_from_event(event: Mapping[str, Any]) -> list[QueueMessage]:
    """Decode a raw delivery envelope ``{"Records": [...]}``.

    Raises ValidationError when the envelope itself is malformed.
    """
    records = event.get("Records") if isinstance(event, Mapping) else None
    if not isinstance(records, list):
        raise ValidationError("delivery envelope has no Records list", field="Records")
    messages = []
    for record in records:
        if not isinstance(record, Mapping) or not record.get("messageId"):
            raise ValidationError("record without messageId", field="Records")
        attributes = record.get("attributes") or {}
        messages.append(
            QueueMessage(
                message_id=str(record["messageId"]),
                body=str(record.get("body", "")),
                delivery_count=int(attributes.get("ApproximateReceiveCount", 1)),
            )
        )
    return messages


class EventConsumer:
    """Persists delivered webhook events and reports per-item failures."""

    def __init__(self, store: WebhookEventStore) -> None:
        self._store = store

    def handle(self, batch: Sequence[QueueMessage], deadline: Deadline | None = None) -> BatchResponse:
        if isinstance(batch, (str, bytes)) or not isinstance(batch, Sequence):
            raise ValidationError("batch must be a sequence of messages", field="batch")
        for message in batch:
            if not isinstance(message, QueueMessage) or not message.message_id:
                raise ValidationError("batch contains a message without an id", field="batch")

        response = BatchResponse()
        for message in batch:
            try:
                event = InboundEvent.from_json(message.body)
            except ValidationError as exc:
                logger.error("Failed to decode webhook event: message_id=%s error=%s", message.message_id, exc)
                response.failures.append(BatchItemFailure(message.message_id))
                continue

            try:
                self._store.create(event, deadline)
            except WritePathError as exc:
                logger.error(
                    "Failed to write webhook event: message_id=%s event_id=%s error=%s",
                    message.message_id,
                    event.id,
                    exc,
                )
                response.failures.append(BatchItemFailure(message.message_id))
                continue

            logger.info(
                "Processed webhook event: message_id=%s event_id=%s type=%s",
                message.message_id,
                event.id,
                event.type,
            )

        if response.failures:
            logger.warning("Batch of %d had %d failures", len(batch), len(response.failures))
        return response

    def handle_event(self, event: Mapping[str, Any], deadline: Deadline | None = None) -> dict[str, Any]:
        """Process a raw delivery envelope and return the failure contract dict."""
        return self.handle(messages_from_event(event), deadline).to_dict()
