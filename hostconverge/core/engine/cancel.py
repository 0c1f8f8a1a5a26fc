"""
Cancellation token — a deadline plus an explicit cancel switch.

One token is shared by every component of a run. Each external call
asks ``clamp()`` for its timeout so that no single command can outlive
the run's budget, and checks ``raise_if_cancelled()`` before starting.
"""

from __future__ import annotations

import threading
import time

from hostconverge.core.errors import Cancelled


class CancelToken:
    """Thread-safe cancellation for one convergence run.

    Args:
        timeout: Seconds from now until the run is considered cancelled.
            None means no deadline.
    """

    def __init__(self, timeout: float | None = None):
        self._event = threading.Event()
        self._deadline = None if timeout is None else time.monotonic() + timeout
        self._reason = ""

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def reason(self) -> str:
        if self._event.is_set():
            return self._reason
        return "deadline exceeded" if self.cancelled else ""

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def clamp(self, timeout: float | None) -> float | None:
        """Shorten ``timeout`` so it never passes the deadline."""
        left = self.remaining()
        if left is None:
            return timeout
        if timeout is None:
            return left
        return min(timeout, left)

    def raise_if_cancelled(self, during: str = "") -> None:
        if self.cancelled:
            where = f" during {during}" if during else ""
            raise Cancelled(f"Run {self.reason}{where}")

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if cancelled meanwhile."""
        left = self.remaining()
        if left is not None:
            seconds = min(seconds, left)
        self._event.wait(seconds)
        return self.cancelled
