"""Queue worker: drains the webhook stream into storage.

Each iteration receives one batch (stale redeliveries first), hands it to
the EventConsumer, and acknowledges only the messages that succeeded.
Failed messages stay pending and are reclaimed after ``claim_idle_ms``
until the queue dead-letters them.

Usage:
    python -m statusbot.worker
"""

from __future__ import annotations

import logging
import signal
import socket
import threading

import redis

from statusbot.bus import RedisStreamQueue
from statusbot.config import Settings, configure_logging
from statusbot.deadline import Deadline
from statusbot.storage.redis_store import RedisStorage
from statusbot.webhooks.consumer import EventConsumer
from statusbot.webhooks.store import WebhookEventStore

logger = logging.getLogger(__name__)

_ERROR_PAUSE_SECONDS = 1.0


class WebhookWorker:
    """Receive -> handle -> ack loop for one consumer name."""

    def __init__(
        self,
        queue: RedisStreamQueue,
        consumer: EventConsumer,
        consumer_name: str,
        *,
        batch_size: int = 10,
        block_ms: int = 2000,
        claim_idle_ms: int = 30_000,
        batch_timeout: float | None = None,
    ) -> None:
        self._queue = queue
        self._consumer = consumer
        self.consumer_name = consumer_name
        self.batch_size = batch_size
        self.block_ms = block_ms
        self.claim_idle_ms = claim_idle_ms
        self.batch_timeout = batch_timeout

    def process_once(self, deadline: Deadline | None = None) -> int:
        """Process one batch. Returns the number of messages acknowledged."""
        messages = self._queue.receive(
            self.consumer_name,
            count=self.batch_size,
            block_ms=self.block_ms,
            min_idle_ms=self.claim_idle_ms,
        )
        if not messages:
            return 0

        if deadline is None and self.batch_timeout is not None:
            deadline = Deadline.after(self.batch_timeout)
        response = self._consumer.handle(messages, deadline)
        failed = set(response.failed_ids)
        succeeded = [m.message_id for m in messages if m.message_id not in failed]
        self._queue.ack(*succeeded)
        logger.info("Batch done: received=%d acked=%d failed=%d", len(messages), len(succeeded), len(failed))
        return len(succeeded)

    def run(self, stop: threading.Event) -> None:
        """Loop until ``stop`` is set."""
        self._queue.ensure_consumer_group()
        logger.info("Worker %s consuming %s", self.consumer_name, self._queue.stream)
        while not stop.is_set():
            try:
                self.process_once()
            except redis.RedisError:
                logger.warning("Queue unavailable, pausing", exc_info=True)
                stop.wait(_ERROR_PAUSE_SECONDS)
        logger.info("Worker %s stopped", self.consumer_name)


def build_worker(settings: Settings) -> WebhookWorker:
    connection = redis.from_url(settings.redis_url, decode_responses=True)
    storage = RedisStorage(connection)
    queue = RedisStreamQueue(
        connection,
        settings.queue_stream,
        group=settings.consumer_group,
        dead_letter_stream=settings.dead_letter_stream,
        max_deliveries=settings.max_deliveries,
    )
    consumer = EventConsumer(WebhookEventStore(storage, settings.table_name))
    return WebhookWorker(
        queue,
        consumer,
        f"{socket.gethostname()}-{threading.get_ident()}",
        batch_size=settings.batch_size,
        block_ms=settings.block_ms,
        claim_idle_ms=settings.claim_idle_ms,
    )


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    worker = build_worker(settings)

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    worker.run(stop)


if __name__ == "__main__":
    main()
