"""Bounded exponential backoff for cooperative waiting.

Used wherever a worker slot has to wait for a condition it cannot block
on directly (free memory rising above the floor, the job-start delay).
Waiting is always done on the shutdown flag so a signal interrupts the
sleep immediately.

Example:
    >>> backoff = ExponentialBackoff(base_delay=0.05, max_delay=1.0, jitter=False)
    >>> [backoff.next_delay(n) for n in range(6)]
    [0.05, 0.1, 0.2, 0.4, 0.8, 1.0]
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass
class ExponentialBackoff:
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) ± jitter

    Attributes:
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness so slots do not wake in lockstep
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    base_delay: float = 0.05
    max_delay: float = 1.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        """Calculate the delay before the next poll (``attempt`` is zero-based)."""
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = min(max(0.0, delay), self.max_delay)

        return delay


__all__ = ["ExponentialBackoff"]
