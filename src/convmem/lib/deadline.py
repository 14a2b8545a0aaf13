"""Request deadlines checked between storage round-trips."""

from __future__ import annotations

import time

from convmem.errors import DeadlineExceededError


class Deadline:
    """A monotonic-clock deadline. ``Deadline(None)`` never expires."""

    def __init__(self, timeout_seconds: float | None, clock=time.monotonic):
        self._clock = clock
        self._expires_at = None if timeout_seconds is None else clock() + timeout_seconds

    @property
    def unbounded(self) -> bool:
        return self._expires_at is None

    def remaining(self) -> float | None:
        """Seconds left, or None when unbounded. Never negative."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self, stage: str) -> None:
        """Raise DeadlineExceededError if the deadline has passed."""
        if self.expired():
            raise DeadlineExceededError(f"Deadline exceeded before {stage}")

    def cap(self, timeout: float) -> float:
        """Clamp a per-call timeout to what is left of the deadline."""
        remaining = self.remaining()
        return timeout if remaining is None else min(timeout, remaining)
