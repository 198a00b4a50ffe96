"""Tests for Deadline cancellation and bounded sleeps."""

from __future__ import annotations

import threading
import time

import pytest

from statusbot.deadline import Deadline, ensure_deadline
from statusbot.errors import CancellationError, ErrorKind


class TestDeadline:
    def test_unbounded_never_expires(self):
        d = Deadline()
        assert d.remaining() is None
        assert not d.expired()
        d.check()

    def test_cancel(self):
        d = Deadline()
        d.cancel()
        assert d.cancelled
        assert d.expired()
        with pytest.raises(CancellationError, match="cancelled") as exc_info:
            d.check()
        assert exc_info.value.kind == ErrorKind.CANCELLED

    def test_timeout_expires(self):
        d = Deadline(timeout_seconds=10.0, start_time=time.monotonic() - 11.0)
        assert d.remaining() == 0.0
        with pytest.raises(CancellationError, match="deadline exceeded"):
            d.check()

    def test_remaining_counts_down(self):
        d = Deadline(timeout_seconds=10.0, start_time=time.monotonic() - 4.0)
        assert 5.0 < d.remaining() <= 6.0

    def test_ensure_deadline(self):
        d = Deadline.after(1.0)
        assert ensure_deadline(d) is d
        assert ensure_deadline(None).timeout_seconds is None


class TestSleep:
    def test_short_sleep_completes(self):
        Deadline.after(5.0).sleep(0.01)

    def test_sleep_stops_at_deadline(self):
        d = Deadline.after(0.05)
        start = time.monotonic()
        with pytest.raises(CancellationError, match="deadline exceeded"):
            d.sleep(30.0)
        assert time.monotonic() - start < 5.0

    def test_cancel_from_another_thread_wakes_sleeper(self):
        d = Deadline()
        timer = threading.Timer(0.05, d.cancel)
        timer.start()
        start = time.monotonic()
        try:
            with pytest.raises(CancellationError, match="cancelled"):
                d.sleep(30.0)
        finally:
            timer.cancel()
        assert time.monotonic() - start < 5.0

    def test_already_cancelled_does_not_sleep(self):
        d = Deadline()
        d.cancel()
        with pytest.raises(CancellationError):
            d.sleep(30.0)
