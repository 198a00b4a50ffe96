"""Event publisher: hands validated webhook events to the durable queue.

A successful accept from the queue is enough to answer the webhook caller;
persistence happens later in the consumer. Enqueue failures are raised to
the caller so the webhook POST fails and the sender retries.
"""

from __future__ import annotations

import logging
from typing import Any

from statusbot.deadline import Deadline, ensure_deadline
from statusbot.errors import QueueSendError, ValidationError
from statusbot.models import InboundEvent
from statusbot.storage.protocol import QueueClient

logger = logging.getLogger(__name__)


def new_event(event_type: str, source: str, payload: dict[str, Any] | None = None) -> InboundEvent:
    """Build an InboundEvent with fresh identity and timestamp."""
    return InboundEvent(type=event_type, source=source, payload=payload or {}).with_identity()


class EventPublisher:
    """Serialises InboundEvents and sends them as single queue messages."""

    def __init__(self, queue: QueueClient) -> None:
        self._queue = queue

    def publish(self, event: InboundEvent, deadline: Deadline | None = None) -> str:
        """Enqueue ``event``, assigning identity if missing.

        Returns the queue's message id. Raises ValidationError for a payload
        holding non-finite numbers, QueueSendError when the queue does not
        accept the message, and CancellationError when the deadline has
        already passed.
        """
        ensure_deadline(deadline).check()
        event = event.with_identity()
        try:
            body = event.to_json()
        except ValueError as exc:
            raise ValidationError(f"event is not valid JSON: {exc}", field="payload") from exc
        try:
            message_id = self._queue.send_message(body)
        except QueueSendError:
            logger.error("Failed to publish webhook event %s (type=%s)", event.id, event.type)
            raise
        except Exception as exc:
            logger.error("Failed to publish webhook event %s (type=%s)", event.id, event.type)
            raise QueueSendError(f"queue send failed: {exc}") from exc

        logger.info(
            "Published webhook event: id=%s type=%s source=%s message_id=%s",
            event.id,
            event.type,
            event.source,
            message_id,
        )
        return message_id
