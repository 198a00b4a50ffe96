"""Redis Streams durable queue: publish, consume, ack, dead-letter.

Messages are added via XADD with an auto-generated stream ID (*), which
doubles as the delivery-system message id. Consumers read through a
consumer group; anything not acknowledged stays pending and is reclaimed
with XAUTOCLAIM once idle, which is how failed items get redelivered.

A message delivered more than ``max_deliveries`` times is copied to the
dead-letter stream and acknowledged instead of being retried again.
"""

from __future__ import annotations

import logging

import redis

from statusbot.errors import QueueSendError
from statusbot.models import QueueMessage

logger = logging.getLogger(__name__)

DEFAULT_STREAM = "statusbot:webhooks"
DEFAULT_DEAD_LETTER_STREAM = "statusbot:webhooks:dlq"
DEFAULT_CONSUMER_GROUP = "webhook-processor"
DEFAULT_MAX_DELIVERIES = 5
DEFAULT_MAXLEN = 10_000


class RedisStreamQueue:
    """QueueClient plus consumer-side operations over one Redis Stream."""

    def __init__(
        self,
        client: redis.Redis,
        stream: str = DEFAULT_STREAM,
        *,
        group: str = DEFAULT_CONSUMER_GROUP,
        dead_letter_stream: str = DEFAULT_DEAD_LETTER_STREAM,
        max_deliveries: int = DEFAULT_MAX_DELIVERIES,
        maxlen: int = DEFAULT_MAXLEN,
    ) -> None:
        self._redis = client
        self.stream = stream
        self.group = group
        self.dead_letter_stream = dead_letter_stream
        self.max_deliveries = max_deliveries
        self.maxlen = maxlen

    @classmethod
    def from_url(cls, url: str, **kwargs) -> RedisStreamQueue:
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def send_message(self, body: str) -> str:
        """XADD ``body`` to the stream. Raises QueueSendError on failure."""
        try:
            entry_id = self._redis.xadd(self.stream, {"body": body}, maxlen=self.maxlen, approximate=True)
        except redis.RedisError as exc:
            raise QueueSendError(f"queue send failed: stream={self.stream}: {exc}") from exc
        return entry_id

    # ------------------------------------------------------------------
    # Consumer group management
    # ------------------------------------------------------------------

    def ensure_consumer_group(self) -> None:
        """Create the consumer group (idempotent)."""
        try:
            self._redis.xgroup_create(self.stream, self.group, id="0", mkstream=True)
            logger.info("Consumer group '%s' created on %s", self.group, self.stream)
        except redis.ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    # ------------------------------------------------------------------
    # Consuming
    # ------------------------------------------------------------------

    def read_batch(self, consumer: str, *, count: int = 10, block_ms: int = 2000) -> list[QueueMessage]:
        """Read new messages for ``consumer``."""
        result = self._redis.xreadgroup(self.group, consumer, {self.stream: ">"}, count=count, block=block_ms)
        if not result:
            return []
        # result is [(stream_name, [(entry_id, fields), ...])]
        return [_to_message(entry_id, fields, 1) for entry_id, fields in result[0][1]]

    def claim_stale(self, consumer: str, *, min_idle_ms: int = 60_000, count: int = 10) -> list[QueueMessage]:
        """Reclaim messages left pending by failed or crashed consumers.

        Messages past ``max_deliveries`` are dead-lettered and not returned.
        """
        # XAUTOCLAIM returns [next_start_id, entries] on Redis 6.2 and adds
        # deleted_ids as a third element from Redis 7
        entries = self._redis.xautoclaim(
            self.stream,
            self.group,
            consumer,
            min_idle_time=min_idle_ms,
            count=count,
        )[1]
        messages: list[QueueMessage] = []
        for entry_id, fields in entries:
            if fields is None:
                continue
            message = _to_message(entry_id, fields, self._delivery_count(entry_id))
            if message.delivery_count > self.max_deliveries:
                self.dead_letter(message)
                continue
            messages.append(message)
        if messages:
            logger.info("Claimed %d stale messages from %s (idle > %dms)", len(messages), self.stream, min_idle_ms)
        return messages

    def receive(
        self,
        consumer: str,
        *,
        count: int = 10,
        block_ms: int = 2000,
        min_idle_ms: int = 60_000,
    ) -> list[QueueMessage]:
        """Redeliveries first, then new messages."""
        claimed = self.claim_stale(consumer, min_idle_ms=min_idle_ms, count=count)
        if claimed:
            return claimed
        return self.read_batch(consumer, count=count, block_ms=block_ms)

    def ack(self, *message_ids: str) -> int:
        """Acknowledge processed messages. Returns the number acknowledged."""
        if not message_ids:
            return 0
        return self._redis.xack(self.stream, self.group, *message_ids)

    def dead_letter(self, message: QueueMessage) -> None:
        """Move a message to the dead-letter stream."""
        self._redis.xadd(
            self.dead_letter_stream,
            {
                "body": message.body,
                "message_id": message.message_id,
                "delivery_count": str(message.delivery_count),
            },
            maxlen=self.maxlen,
            approximate=True,
        )
        self._redis.xack(self.stream, self.group, message.message_id)
        logger.warning(
            "Dead-lettered message %s after %d deliveries", message.message_id, message.delivery_count
        )

    def pending_count(self) -> int:
        info = self._redis.xpending(self.stream, self.group)
        return info.get("pending", 0) if isinstance(info, dict) else 0

    def _delivery_count(self, entry_id: str) -> int:
        pending = self._redis.xpending_range(self.stream, self.group, min=entry_id, max=entry_id, count=1)
        if not pending:
            return 1
        return int(pending[0].get("times_delivered", 1))


def _to_message(entry_id: str, fields: dict[str, str], delivery_count: int) -> QueueMessage:
    return QueueMessage(message_id=entry_id, body=fields.get("body", ""), delivery_count=delivery_count)
