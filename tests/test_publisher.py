"""Tests for the event publisher."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from statusbot.deadline import Deadline
from statusbot.errors import CancellationError, QueueSendError, ValidationError
from statusbot.models import InboundEvent
from statusbot.webhooks.publisher import EventPublisher, new_event


class TestNewEvent:
    def test_identity_assigned(self):
        event = new_event("deploy", "ci", {"sha": "abc"})
        assert event.id.startswith("webhook#")
        assert event.created_at
        assert event.payload == {"sha": "abc"}

    def test_ids_are_unique(self):
        assert len({new_event("t", "s").id for _ in range(500)}) == 500

    def test_payload_defaults_to_empty(self):
        assert new_event("t", "s").payload == {}


class TestPublish:
    def test_sends_serialised_event(self, queue):
        event = new_event("deploy", "ci", {"sha": "abc"})
        message_id = EventPublisher(queue).publish(event)
        assert message_id == "1-0"
        assert len(queue.messages) == 1
        body = json.loads(queue.messages[0].body)
        assert body == event.to_dict()

    def test_assigns_identity_when_missing(self, queue):
        EventPublisher(queue).publish(InboundEvent(type="t", source="s"))
        body = json.loads(queue.messages[0].body)
        assert body["id"].startswith("webhook#")
        assert body["created_at"]

    def test_queue_failure_propagates(self, queue, queue_failure):
        queue.fail = queue_failure
        with pytest.raises(QueueSendError):
            EventPublisher(queue).publish(new_event("t", "s"))

    def test_unexpected_client_error_wrapped(self):
        client = MagicMock()
        client.send_message.side_effect = ConnectionError("reset by peer")
        with pytest.raises(QueueSendError, match="reset by peer"):
            EventPublisher(client).publish(new_event("t", "s"))

    def test_cancelled_deadline_sends_nothing(self, queue):
        deadline = Deadline()
        deadline.cancel()
        with pytest.raises(CancellationError):
            EventPublisher(queue).publish(new_event("t", "s"), deadline)
        assert queue.messages == []

    def test_non_finite_payload_rejected(self, queue):
        with pytest.raises(ValidationError):
            EventPublisher(queue).publish(new_event("t", "s", {"x": float("nan")}))
        assert queue.messages == []

    def test_published_body_round_trips(self, queue):
        event = new_event("deploy", "ci", {"nested": {"a": [1, 2]}})
        EventPublisher(queue).publish(event)
        assert InboundEvent.from_json(queue.messages[0].body) == event
