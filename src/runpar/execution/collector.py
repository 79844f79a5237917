"""Result Collector - writes job output to the shared streams.

Two ordering modes:

``AS_COMPLETED``
    Each result is flushed as soon as it is submitted. A job's stdout and
    stderr are written contiguously under one lock, so output of two jobs
    never interleaves.

``INPUT_ORDER``
    Results are parked in a reorder buffer keyed by sequence number and
    flushed strictly in increasing order. The buffer is bounded: a submit
    for any sequence number other than the next one blocks while the
    buffer holds ``capacity`` results. The worker that owns the next
    sequence number never blocks, so the run always makes progress.

Sequence numbers that produce no output (resume skips) are registered
with :meth:`ResultCollector.skip`, which never blocks. :meth:`close`
flushes whatever is left in order; after a shutdown it tolerates gaps.
"""

from __future__ import annotations

import sys
import threading
from typing import BinaryIO

from runpar.core.config.run import OrderingMode
from runpar.core.logging import get_logger
from runpar.execution.models import JobResult, RunSummary
from runpar.execution.signals import ShutdownFlag

logger = get_logger(__name__)


class ResultCollector:
    """Serialises job output onto stdout/stderr in the configured order."""

    def __init__(
        self,
        ordering: OrderingMode = OrderingMode.AS_COMPLETED,
        *,
        capacity: int = 1,
        flag: ShutdownFlag | None = None,
        stdout: BinaryIO | None = None,
        stderr: BinaryIO | None = None,
    ):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.ordering = ordering
        self.capacity = capacity
        self.flag = flag or ShutdownFlag()
        self.summary = RunSummary()
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._stderr = stderr if stderr is not None else sys.stderr.buffer
        self._cond = threading.Condition()
        self._next_seq = 1
        # seq -> result, or None for a skipped seq
        self._buffer: dict[int, JobResult | None] = {}
        self._pending = 0
        self._closed = False

    @property
    def next_seq(self) -> int:
        with self._cond:
            return self._next_seq

    # ── Writing ──────────────────────────────────────────────────

    def _write(self, result: JobResult) -> None:
        if result.passthrough:
            return
        if result.stdout:
            self._stdout.write(result.stdout)
            self._stdout.flush()
        if result.stderr:
            self._stderr.write(result.stderr)
            self._stderr.flush()

    def _drain(self) -> None:
        """Flush the contiguous run of buffered results starting at next_seq."""
        while self._next_seq in self._buffer:
            result = self._buffer.pop(self._next_seq)
            if result is not None:
                self._pending -= 1
                self._write(result)
            self._next_seq += 1
        self._cond.notify_all()

    # ── Public API ───────────────────────────────────────────────

    def notice(self, message: str) -> None:
        """Write a runpar notice line to stderr, never inside a job's output."""
        with self._cond:
            self._stderr.write((message + "\n").encode("utf-8", errors="surrogateescape"))
            self._stderr.flush()

    def submit(self, result: JobResult) -> None:
        """Hand over a finished job; may block in input-order mode."""
        with self._cond:
            if self._closed:
                raise RuntimeError("submit() after close()")
            self.summary.record(result)

            if self.ordering is OrderingMode.AS_COMPLETED:
                self._write(result)
                return

            while (
                result.seq != self._next_seq
                and self._pending >= self.capacity
                and not self.flag.is_set()
            ):
                self._cond.wait(timeout=0.1)
            self._buffer[result.seq] = result
            self._pending += 1
            self._drain()

    def skip(self, seq: int) -> None:
        """Register a sequence number that will never produce a result."""
        with self._cond:
            self.summary.skipped += 1
            if self.ordering is OrderingMode.AS_COMPLETED:
                return
            self._buffer[seq] = None
            self._drain()

    def close(self) -> RunSummary:
        """Flush the remaining buffer in sequence order, tolerating gaps."""
        with self._cond:
            if self._closed:
                return self.summary
            self._closed = True
            for seq in sorted(self._buffer):
                result = self._buffer.pop(seq)
                if seq != self._next_seq:
                    logger.debug("collector.gap", expected=self._next_seq, got=seq)
                if result is not None:
                    self._write(result)
                self._next_seq = seq + 1
            self._pending = 0
            self._cond.notify_all()
        return self.summary


__all__ = ["ResultCollector"]
