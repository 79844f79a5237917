"""Deadline tracking for supervised jobs.

A :class:`Deadline` is started when a child is spawned and consulted
between supervision slices. It never interrupts anything by itself: the
supervisor decides what to do once it has expired (signal the process
group, wait the grace period, force-kill).

Examples:
    >>> deadline = Deadline.start(5.0)
    >>> deadline.is_expired()
    False
    >>> Deadline.start(None).remaining() is None
    True
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass(frozen=True)
class Deadline:
    """Absolute deadline on the monotonic clock.

    Attributes:
        deadline: Absolute deadline timestamp, or None for no limit
    """

    deadline: float | None

    @classmethod
    def start(cls, seconds: float | None) -> Deadline:
        if seconds is not None and seconds < 0:
            raise ValueError(f"Timeout must be non-negative, got {seconds}")
        return cls(deadline=None if seconds is None else time.monotonic() + seconds)

    def remaining(self) -> float | None:
        """Seconds until the deadline (negative once expired), None if unlimited."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def is_expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def slice(self, interval: float) -> float:
        """Next wait: ``interval``, shortened so the deadline is not overshot."""
        remaining = self.remaining()
        if remaining is None:
            return interval
        return max(0.0, min(interval, remaining))


__all__ = ["Deadline"]
