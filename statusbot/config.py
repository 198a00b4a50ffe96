"""statusbot configuration.

Read once at process entry (app factory, worker, CLI) and passed down
explicitly; components never import settings themselves.
"""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

from statusbot.bus import (
    DEFAULT_CONSUMER_GROUP,
    DEFAULT_DEAD_LETTER_STREAM,
    DEFAULT_MAX_DELIVERIES,
    DEFAULT_STREAM,
)
from statusbot.idempotency import IDEMPOTENCY_TTL_SECONDS


class Settings(BaseSettings):
    """Environment-driven settings."""

    table_name: str = "statusbot-data"
    redis_url: str = "redis://localhost:6379/0"

    # Empty secret = unconfigured; webhook POSTs are rejected
    webhook_secret: str = ""
    api_key: str = ""

    queue_stream: str = DEFAULT_STREAM
    dead_letter_stream: str = DEFAULT_DEAD_LETTER_STREAM
    consumer_group: str = DEFAULT_CONSUMER_GROUP
    max_deliveries: int = DEFAULT_MAX_DELIVERIES
    batch_size: int = 10
    block_ms: int = 2000
    claim_idle_ms: int = 30_000

    idempotency_ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
