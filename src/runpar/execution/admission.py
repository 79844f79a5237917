"""Admission Controller - decides whether a new job may start now.

Two policies compose; both must pass:

- **Worker ceiling** - a counting semaphore allows at most ``jobs``
  concurrently running jobs.
- **Memory floor** - with ``memfree`` configured, free memory is sampled
  (``psutil.virtual_memory().available``) before every admission and the
  job is held back while it is below the floor.

A third, supplementary gate spaces job starts by at least ``delay``
seconds.

Admission is advisory: a job that is already running is never killed
because memory got tight. Waiting slots back off exponentially on the
shutdown flag, so they neither busy-spin nor miss a shutdown request.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

import psutil

from runpar.core.logging import get_logger
from runpar.execution.backoff import ExponentialBackoff
from runpar.execution.signals import ShutdownFlag

logger = get_logger(__name__)

MemoryProbe = Callable[[], int]

_MAX_ATTEMPT = 32


def available_memory() -> int:
    """Bytes of memory available to new processes without swapping."""
    return int(psutil.virtual_memory().available)


class AdmissionController:
    """Gate consulted by every worker slot before it claims input."""

    def __init__(
        self,
        jobs: int,
        *,
        memfree: int | None = None,
        delay: float = 0.0,
        backoff: ExponentialBackoff | None = None,
        memory_probe: MemoryProbe | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if jobs < 1:
            raise ValueError(f"jobs must be at least 1, got {jobs}")
        self.jobs = jobs
        self.memfree = memfree
        self.delay = delay
        self._backoff = backoff or ExponentialBackoff()
        self._probe = memory_probe or available_memory
        self._clock = clock
        self._slots = threading.BoundedSemaphore(jobs)
        self._lock = threading.Lock()
        self._running = 0
        self._last_start: float | None = None
        self._memory_low = False

    @property
    def running(self) -> int:
        with self._lock:
            return self._running

    # ------------------------------------------------------------------ #
    # Policies
    # ------------------------------------------------------------------ #

    def memory_ok(self) -> bool:
        if self.memfree is None:
            return True
        free = self._probe()
        low = free < self.memfree
        if low != self._memory_low:
            self._memory_low = low
            logger.info(
                "admission.memory_low" if low else "admission.memory_ok",
                free=free,
                floor=self.memfree,
            )
        return not low

    def _delay_remaining(self, now: float) -> float:
        if not self.delay or self._last_start is None:
            return 0.0
        return max(0.0, self._last_start + self.delay - now)

    def try_admit(self) -> bool:
        """Admit one job now if every policy allows it."""
        return self._try_admit()[0]

    def _try_admit(self) -> tuple[bool, float | None]:
        """Returns (admitted, wait hint in seconds or None for backoff)."""
        if not self.memory_ok():
            return False, None
        if not self._slots.acquire(blocking=False):
            return False, None
        with self._lock:
            now = self._clock()
            remaining = self._delay_remaining(now)
            if remaining > 0:
                self._slots.release()
                return False, remaining
            self._last_start = now
            self._running += 1
        return True, None

    # ------------------------------------------------------------------ #
    # Blocking API
    # ------------------------------------------------------------------ #

    def admit(self, flag: ShutdownFlag) -> bool:
        """Block until admitted; False if shutdown was requested first."""
        attempt = 0
        while not flag.is_set():
            admitted, hint = self._try_admit()
            if admitted:
                return True
            wait = hint if hint is not None else self._backoff.next_delay(attempt)
            attempt = min(attempt + 1, _MAX_ATTEMPT)
            if flag.wait(wait):
                break
        return False

    def release(self) -> None:
        """Free the slot taken by a finished job."""
        with self._lock:
            if self._running == 0:
                raise RuntimeError("release() called without a matching admission")
            self._running -= 1
        self._slots.release()


__all__ = ["AdmissionController", "MemoryProbe", "available_memory"]
