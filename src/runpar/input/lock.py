"""Input Lock - the single point of mutual exclusion over the input cursor.

Many worker slots call :meth:`InputLock.next_batch` concurrently. Each
call atomically pulls up to ``n`` records from the shared
:class:`~runpar.input.source.InputSource` and stamps the batch with the
next sequence number, so:

- no two workers ever receive the same record,
- no record is skipped,
- sequence numbers are unique and strictly increasing in claim order.

A grouped batch (``n > 1``) is one job and consumes one sequence number.

Example::

    lock = InputLock(InputSource.from_args(["a", "b", "c"]))
    lock.next_batch(2)   # Claim(seq=1, records=(("a",), ("b",)))
    lock.next_batch(2)   # Claim(seq=2, records=(("c",),))
    lock.next_batch(2)   # None
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from runpar.core.errors import InputReadError
from runpar.core.logging import get_logger
from runpar.input.source import InputRecord, InputSource

logger = get_logger(__name__)


@dataclass(frozen=True)
class Claim:
    """Records claimed by one worker for one job."""

    seq: int
    records: tuple[InputRecord, ...]

    @property
    def args(self) -> tuple[str, ...]:
        """Positional arguments: every value of every record, flattened."""
        return tuple(value for record in self.records for value in record)


@dataclass(frozen=True)
class ETA:
    """Progress estimate derived from the consumption rate.

    Attributes:
        claimed: Jobs claimed so far
        total: Total jobs, or None when the input is a stream
        elapsed: Seconds since the first claim
    """

    claimed: int
    total: int | None
    elapsed: float

    @property
    def average(self) -> float | None:
        """Seconds per job so far."""
        if self.claimed == 0:
            return None
        return self.elapsed / self.claimed

    @property
    def remaining(self) -> float | None:
        """Estimated seconds left; None when the total is unknown."""
        if self.total is None or self.average is None:
            return None
        return self.average * max(self.total - self.claimed, 0)

    def render(self) -> str:
        if self.remaining is None:
            return f"ETA: unavailable  Claimed: {self.claimed}  Elapsed: {self.elapsed:.1f}s"
        return (
            f"ETA: {self.remaining:.1f}s  Left: {max(self.total - self.claimed, 0)}"  # type: ignore[operator]
            f"  Avg: {self.average:.3f}s  Claimed: {self.claimed}/{self.total}"
        )


class InputLock:
    """Thread-safe cursor over an :class:`InputSource`."""

    def __init__(self, source: InputSource, *, max_args: int = 1):
        self._source = source
        self._max_args = max_args
        self._lock = threading.Lock()
        self._next_seq = 1
        self._claimed = 0
        self._exhausted = False
        self._started: float | None = None

    @property
    def total_jobs(self) -> int | None:
        """Number of jobs the source will produce, when known."""
        if self._source.total is None:
            return None
        return -(-self._source.total // self._max_args)

    def next_batch(self, n: int | None = None) -> Claim | None:
        """Claim the next up-to-``n`` records, or None when exhausted.

        Raises:
            InputReadError: The source failed; fatal for the run. Later
                callers see exhaustion.
        """
        size = n or self._max_args
        with self._lock:
            if self._exhausted:
                return None
            if self._started is None:
                self._started = time.monotonic()

            records: list[InputRecord] = []
            try:
                while len(records) < size:
                    records.append(next(self._source))
            except StopIteration:
                self._exhausted = True
            except InputReadError:
                self._exhausted = True
                logger.error("input.read_failed", source=self._source.describe())
                raise

            if not records:
                return None

            claim = Claim(seq=self._next_seq, records=tuple(records))
            self._next_seq += 1
            self._claimed += 1
            return claim

    def eta(self) -> ETA:
        with self._lock:
            elapsed = 0.0 if self._started is None else time.monotonic() - self._started
            return ETA(claimed=self._claimed, total=self.total_jobs, elapsed=elapsed)

    @property
    def exhausted(self) -> bool:
        with self._lock:
            return self._exhausted


__all__ = ["Claim", "ETA", "InputLock"]
