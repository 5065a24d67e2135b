"""
Deadlines for handler work.

A Python thread cannot be killed from the outside, so "maximum handler
lifetime" has to be cooperative: every blocking step asks the deadline how
much time is left and uses that as its timeout.

    Deadline(30.0)
        │
        ├── clamp(10.0)    socket timeout = min(10.0, time left)
        ├── sleep(8.0)     waits on the cancel event, not time.sleep()
        └── check()        raises HandlerTimeout once expired or cancelled

The cancel event is shared by every deadline the server hands out, so a
shutdown that runs out of patience can wake all sleeping handlers at once.
"""

import threading
import time
from typing import Optional

from ..errors import HandlerTimeout


class Deadline:
    """A monotonic expiry point with an optional shared cancel event."""

    def __init__(self, timeout: Optional[float], cancel_event: Optional[threading.Event] = None):
        self.timeout = timeout
        self._expires_at = None if timeout is None else time.monotonic() + timeout
        self._cancel_event = cancel_event or threading.Event()

    @classmethod
    def never(cls) -> "Deadline":
        """A deadline that never expires (still cancellable)."""
        return cls(None)

    def remaining(self) -> Optional[float]:
        """Seconds left, clipped at 0. None means unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self):
        self._cancel_event.set()

    def check(self):
        """Raise HandlerTimeout if the deadline expired or was cancelled."""
        if self.cancelled:
            raise HandlerTimeout("Handler cancelled")
        if self.expired:
            raise HandlerTimeout(f"Handler exceeded {self.timeout}s")

    def clamp(self, timeout: Optional[float]) -> Optional[float]:
        """
        The smaller of ``timeout`` and the time left.

        Raises HandlerTimeout instead of returning 0, because a socket
        timeout of 0 would silently switch the socket to non-blocking mode.
        """
        self.check()
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    def sleep(self, seconds: float):
        """
        Sleep for ``seconds`` unless the deadline or a cancel comes first.

        Raises:
            HandlerTimeout: The sleep was cut short.
        """
        if seconds <= 0:
            self.check()
            return

        budget = self.clamp(seconds)
        if self._cancel_event.wait(budget):
            raise HandlerTimeout("Handler cancelled")
        if budget < seconds:
            raise HandlerTimeout(f"Handler exceeded {self.timeout}s")

    def __repr__(self) -> str:
        return f"Deadline(timeout={self.timeout}, remaining={self.remaining()})"
