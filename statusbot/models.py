"""Shared data model for the write path.

InboundEvent is the append-only webhook event; QueueMessage wraps its
serialised form on the durable queue; WriteRequest is one record bound for
the storage engine; IdempotencyRecord is a cached response for a mutating
request.
"""

from __future__ import annotations

import json
import secrets
import time
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, field_validator

from statusbot.errors import ValidationError

WEBHOOK_ID_PREFIX = "webhook#"
WEBHOOK_ITEM_TYPE = "webhook"

# Storage engine per-call limit for batch writes
BATCH_WRITE_MAX_ITEMS = 25


def utc_timestamp(epoch: float | None = None) -> str:
    """RFC 3339 UTC timestamp with second precision."""
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(epoch if epoch is not None else time.time()))


def webhook_event_id() -> str:
    """Random event identity. Webhook events have no natural dedup key."""
    return WEBHOOK_ID_PREFIX + secrets.token_hex(8)


def full_webhook_id(event_id: str) -> str:
    """Accept ``webhook#abc`` or ``abc`` and return the prefixed form."""
    if event_id.startswith(WEBHOOK_ID_PREFIX):
        return event_id
    return WEBHOOK_ID_PREFIX + event_id


def stable_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str, allow_nan=False)


class WebhookPayload(BaseModel):
    """Validated inbound webhook body.

    Callers do not choose event identity, so an ``id`` key is ignored.
    """

    type: str = Field(min_length=1)
    source: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}

    @field_validator("type", "source")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


@dataclass(frozen=True)
class InboundEvent:
    """Webhook event. Immutable once created."""

    type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    created_at: str = ""

    def with_identity(self) -> InboundEvent:
        """Return a copy with id and created_at filled in where missing."""
        if self.id and self.created_at:
            return self
        return InboundEvent(
            type=self.type,
            source=self.source,
            payload=self.payload,
            id=self.id or webhook_event_id(),
            created_at=self.created_at or utc_timestamp(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "payload": self.payload,
            "created_at": self.created_at,
        }

    def to_item(self) -> dict[str, Any]:
        """Storage form: the wire dict plus the item_type index attribute."""
        item = self.to_dict()
        item["item_type"] = WEBHOOK_ITEM_TYPE
        return item

    def to_json(self) -> str:
        return stable_json(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any) -> InboundEvent:
        if not isinstance(data, dict):
            raise ValidationError("event must be a JSON object", field="body")
        for name in ("type", "source"):
            if not isinstance(data.get(name), str) or not data[name]:
                raise ValidationError("is required", field=name)
        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            raise ValidationError("must be an object", field="payload")
        return cls(
            type=data["type"],
            source=data["source"],
            payload=payload,
            id=str(data.get("id") or ""),
            created_at=str(data.get("created_at") or ""),
        )

    @classmethod
    def from_json(cls, body: str | bytes) -> InboundEvent:
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as exc:
            raise ValidationError(f"invalid JSON: {exc}", field="body") from exc
        return cls.from_dict(data)


@dataclass
class QueueMessage:
    """Delivery wrapper around a serialised InboundEvent.

    ``message_id`` is assigned by the delivery system and is distinct from
    the event id. The same message may be delivered more than once.
    """

    message_id: str
    body: str
    delivery_count: int = 1


@dataclass(frozen=True)
class WriteRequest:
    """One record bound for the storage engine."""

    key: str
    item: dict[str, Any]
    if_absent: bool = False
    expires_at: int | None = None


@dataclass
class BatchWriteResult:
    """Outcome of one storage batch-write call."""

    unprocessed: list[WriteRequest] = field(default_factory=list)


@dataclass
class Page:
    """One page of a range query."""

    items: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None


@dataclass
class IdempotencyRecord:
    """Cached response for a mutating request. Never updated in place."""

    key: str
    status_code: int
    body: str
    created_at: str
    expires_at: int

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_item(self) -> dict[str, Any]:
        return {
            "id": self.key,
            "status_code": self.status_code,
            "body": self.body,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "item_type": "idempotency",
        }

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> IdempotencyRecord:
        return cls(
            key=str(item["id"]),
            status_code=int(item["status_code"]),
            body=str(item.get("body", "")),
            created_at=str(item.get("created_at", "")),
            expires_at=int(item["expires_at"]),
        )
