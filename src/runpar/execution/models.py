"""Execution domain models.

Defines the core data structures that flow through the engine:

- JobSpec: what one worker is about to run (argv or pipe payload)
- JobResult: how it ended (status, exit code, captured output, timing)
- SlotState: the per-worker state machine, with an explicit transition table
- RunSummary: the aggregate outcome of a whole run

JobSpec and JobResult are immutable and worker-local until handed to the
job log and the result collector.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class InvalidTransitionError(ValueError):
    """Raised when a worker slot attempts an illegal state transition."""

    def __init__(self, current: str, target: str, enum_name: str = "SlotState") -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid {enum_name} transition: {current} → {target}")


# =============================================================================
# JOB STATUS
# =============================================================================


class JobStatus(str, Enum):
    """Final status of one job.

    SUCCESS, FAILURE and SIGNALED come from the child's own exit.
    TIMED_OUT and ABORTED mean the supervisor killed the process group.
    SPAWN_ERROR means the executable could not be started; INVALID means
    the command could not even be built. IO_ERROR marks a fault while
    capturing output.
    """

    SUCCESS = "success"
    FAILURE = "failure"
    SIGNALED = "signaled"
    TIMED_OUT = "timed_out"
    SPAWN_ERROR = "spawn_error"
    IO_ERROR = "io_error"
    INVALID = "invalid"
    ABORTED = "aborted"


@dataclass(frozen=True)
class JobSpec:
    """A fully built job.

    Attributes:
        seq: Sequence number (claim order, 1-based)
        slot: Worker slot that claimed it (1-based)
        args: Positional arguments drawn from the input records
        argv: Argument vector to exec; empty in pipe mode
        payload: Bytes for the shared pipe; None for spawned jobs
        display: The literal command line, as logged and printed
        group_size: Number of records grouped into this job
    """

    seq: int
    slot: int
    args: tuple[str, ...]
    argv: tuple[str, ...] = ()
    payload: bytes | None = None
    display: str = ""
    group_size: int = 1


@dataclass(frozen=True)
class JobResult:
    """Outcome of running a :class:`JobSpec`."""

    seq: int
    command: str
    status: JobStatus
    exit_code: int | None = None
    signal: int | None = None
    stdout: bytes = b""
    stderr: bytes = b""
    passthrough: bool = False
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime = field(default_factory=utcnow)
    duration: float = 0.0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.SUCCESS

    @property
    def timed_out(self) -> bool:
        return self.status is JobStatus.TIMED_OUT

    @property
    def aborted(self) -> bool:
        return self.status is JobStatus.ABORTED

    @property
    def executed(self) -> bool:
        """False for jobs that never became an execution attempt."""
        return self.status is not JobStatus.INVALID

    @classmethod
    def invalid(cls, seq: int, command: str, error: str) -> JobResult:
        now = utcnow()
        return cls(seq=seq, command=command, status=JobStatus.INVALID,
                   started_at=now, finished_at=now, error=error)


# =============================================================================
# SLOT STATE MACHINE
# =============================================================================


class SlotState(str, Enum):
    """Lifecycle of one worker slot.

    Valid transition graph::

        IDLE       → ADMITTING | RETIRED
        ADMITTING  → CLAIMING | RETIRED
        CLAIMING   → BUILDING | IDLE (resume skip) | RETIRED
        BUILDING   → RUNNING | FINALIZING (build failure)
        RUNNING    → FINALIZING
        FINALIZING → IDLE
        RETIRED    → (terminal)
    """

    IDLE = "idle"
    ADMITTING = "admitting"
    CLAIMING = "claiming"
    BUILDING = "building"
    RUNNING = "running"
    FINALIZING = "finalizing"
    RETIRED = "retired"


SLOT_VALID_TRANSITIONS: dict[SlotState, frozenset[SlotState]] = {
    SlotState.IDLE: frozenset({SlotState.ADMITTING, SlotState.RETIRED}),
    SlotState.ADMITTING: frozenset({SlotState.CLAIMING, SlotState.RETIRED}),
    SlotState.CLAIMING: frozenset({SlotState.BUILDING, SlotState.IDLE, SlotState.RETIRED}),
    SlotState.BUILDING: frozenset({SlotState.RUNNING, SlotState.FINALIZING}),
    SlotState.RUNNING: frozenset({SlotState.FINALIZING}),
    SlotState.FINALIZING: frozenset({SlotState.IDLE}),
    SlotState.RETIRED: frozenset(),  # terminal
}


def validate_slot_transition(current: SlotState, target: SlotState) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_slot_transition(SlotState.RUNNING, SlotState.FINALIZING)
        >>> validate_slot_transition(SlotState.RUNNING, SlotState.CLAIMING)
        InvalidTransitionError: Invalid SlotState transition: running → claiming
    """
    allowed = SLOT_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value)


# =============================================================================
# RUN SUMMARY
# =============================================================================


@dataclass
class RunSummary:
    """Aggregate outcome of a run."""

    counts: Counter[JobStatus] = field(default_factory=Counter)
    skipped: int = 0
    interrupted: bool = False
    fatal_error: str | None = None

    def record(self, result: JobResult) -> None:
        self.counts[result.status] += 1

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def failed(self) -> int:
        return self.total - self.counts[JobStatus.SUCCESS]

    @property
    def exit_code(self) -> int:
        """0 iff every job succeeded and the run was not cut short."""
        if self.failed or self.interrupted or self.fatal_error:
            return 1
        return 0

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "skipped": self.skipped,
            "failed": self.failed,
            "interrupted": self.interrupted,
            "fatal_error": self.fatal_error,
            "counts": {status.value: n for status, n in self.counts.items()},
        }


__all__ = [
    "InvalidTransitionError",
    "JobResult",
    "JobSpec",
    "JobStatus",
    "RunSummary",
    "SLOT_VALID_TRANSITIONS",
    "SlotState",
    "utcnow",
    "validate_slot_transition",
]
