"""Cancellation and deadline signal passed into every blocking operation.

A ``Deadline`` combines an optional timeout with an explicit cancel flag.
Backoff sleeps go through ``Deadline.sleep`` so that a cancelled caller
stops waiting immediately instead of finishing the sleep.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

from statusbot.errors import CancellationError

logger = logging.getLogger(__name__)


@dataclass
class Deadline:
    """Caller-supplied deadline for one invocation.

    ``timeout_seconds=None`` means no deadline, only explicit cancellation.
    """

    timeout_seconds: float | None = None
    start_time: float = field(default_factory=time.monotonic)
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)

    @classmethod
    def after(cls, seconds: float) -> Deadline:
        return cls(timeout_seconds=seconds)

    def cancel(self) -> None:
        """Signal cancellation to every operation holding this deadline."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when unbounded."""
        if self.timeout_seconds is None:
            return None
        return max(0.0, self.timeout_seconds - (time.monotonic() - self.start_time))

    def expired(self) -> bool:
        if self.cancelled:
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def check(self) -> None:
        """Raise CancellationError if the deadline has passed."""
        if self.cancelled:
            raise CancellationError("operation cancelled")
        if self.expired():
            raise CancellationError("deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled or the deadline passes first."""
        self.check()
        remaining = self.remaining()
        wait = seconds if remaining is None else min(seconds, remaining)
        if self._cancelled.wait(wait):
            raise CancellationError("operation cancelled")
        if remaining is not None and remaining < seconds:
            logger.debug("Deadline hit during %.3fs backoff", seconds)
            raise CancellationError("deadline exceeded")


def ensure_deadline(deadline: Deadline | None) -> Deadline:
    """Return ``deadline`` or an unbounded one."""
    return deadline if deadline is not None else Deadline()
