"""Absolute deadlines threaded through every blocking call.

A Deadline is fixed once at the entry point of a workflow. Waits compare the
monotonic clock against it; only lock timeouts are derived as relative
durations, and those are always clamped to the time that is actually left.
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass(frozen=True)
class Deadline:
    """A point on the monotonic clock beyond which waiting must stop."""

    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> Deadline:
        """Create a deadline `seconds` from now."""
        return cls(time.monotonic() + seconds)

    def remaining(self) -> float:
        """Seconds left before expiry (negative once expired)."""
        return self.expires_at - time.monotonic()

    @property
    def expired(self) -> bool:
        return time.monotonic() > self.expires_at

    def lock_timeout(self, headroom: float = 0.0) -> float:
        """Time that may be spent waiting on a lock.

        `headroom` is reserved for a known-slow step that follows the critical
        section. The result can be negative, meaning the caller should fail fast.
        """
        return self.remaining() - headroom

    def bounded_sleep(self, interval: float) -> float:
        """Sleep for `interval` but never past the deadline. Returns the time slept."""
        duration = max(0.0, min(interval, self.remaining()))
        if duration:
            time.sleep(duration)
        return duration

    def reserve(self, seconds: float) -> Deadline:
        """A deadline `seconds` earlier, keeping that time back for later work."""
        return Deadline(self.expires_at - seconds)
