"""Worker Pool - K slots pulling jobs until the input runs dry.

Each slot is a thread in a :class:`~concurrent.futures.ThreadPoolExecutor`
running the same loop, whose states are validated against
:data:`~runpar.execution.models.SLOT_VALID_TRANSITIONS`::

    IDLE ─► ADMITTING ─► CLAIMING ─► BUILDING ─► RUNNING ─► FINALIZING ─┐
     ▲          │            │  │        │                      ▲        │
     │          │            │  └─ resume skip ─► IDLE          │        │
     │          │            │             └─ build error ────────┘        │
     │          ▼            ▼                                           │
     │       RETIRED ◄── exhausted / shutdown                              │
     └─────────────────────────────────────────────────────────────────────┘

FINALIZING always runs in the same order: job log entry (durable), then
the collector, then the admission slot is released.

Usage::

    flag = ShutdownFlag()
    lock = InputLock(InputSource.from_args(["a", "b"]), max_args=config.max_args)
    summary = WorkerPool.from_config(config, lock, flag=flag).run()
    sys.exit(summary.exit_code)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import BinaryIO

from runpar.core.config.run import OrderingMode, RunConfig
from runpar.core.errors import CommandBuildError, InputReadError, RunparError
from runpar.core.logging import bind_context, clear_context, get_logger, unbind_context
from runpar.execution.admission import AdmissionController
from runpar.execution.backoff import ExponentialBackoff
from runpar.execution.collector import ResultCollector
from runpar.execution.command import CommandStrategy, select_strategy, shared_pipe_argv
from runpar.execution.dry import DryRunExecutor
from runpar.execution.joblog import JobLog
from runpar.execution.models import (
    JobResult,
    JobStatus,
    RunSummary,
    SlotState,
    validate_slot_transition,
)
from runpar.execution.pipe import SharedPipeExecutor
from runpar.execution.protocol import Executor
from runpar.execution.signals import ShutdownFlag
from runpar.execution.supervisor import ProcessExecutor, SupervisionPolicy
from runpar.input.lock import InputLock

logger = get_logger(__name__)

# Statuses that runpar itself announces on stderr.
_NOTICE_STATUSES = frozenset({
    JobStatus.TIMED_OUT,
    JobStatus.SPAWN_ERROR,
    JobStatus.IO_ERROR,
    JobStatus.INVALID,
})


class Slot:
    """One worker slot and its current state."""

    def __init__(self, number: int):
        self.number = number
        self.state = SlotState.IDLE

    def transition(self, target: SlotState) -> None:
        validate_slot_transition(self.state, target)
        self.state = target

    def __repr__(self) -> str:
        return f"Slot({self.number}, {self.state.value})"


class WorkerPool:
    """Runs every job of a run and returns the :class:`RunSummary`."""

    def __init__(
        self,
        config: RunConfig,
        lock: InputLock,
        *,
        flag: ShutdownFlag,
        collector: ResultCollector,
        admission: AdmissionController,
        strategy: CommandStrategy,
        executor: Executor,
        joblog: JobLog | None = None,
        resume: Iterable[int] = (),
    ):
        self.config = config
        self.lock = lock
        self.flag = flag
        self.collector = collector
        self.admission = admission
        self.strategy = strategy
        self.executor = executor
        self.joblog = joblog
        self.resume = frozenset(resume)
        self.slots = [Slot(n) for n in range(1, config.jobs + 1)]
        self._fatal: str | None = None

    @classmethod
    def from_config(
        cls,
        config: RunConfig,
        lock: InputLock,
        *,
        flag: ShutdownFlag | None = None,
        stdout: BinaryIO | None = None,
        stderr: BinaryIO | None = None,
        memory_probe: Callable[[], int] | None = None,
    ) -> WorkerPool:
        """Assemble every collaborator a run needs from its configuration.

        Raises:
            ConfigError: The command template cannot be tokenized
            FileAccessError: The job log to resume from cannot be read
        """
        flag = flag or ShutdownFlag()
        strategy = select_strategy(config)
        policy = SupervisionPolicy.from_config(config)

        executor: Executor
        if config.dry_run:
            executor = DryRunExecutor()
        elif config.pipe:
            argv = shared_pipe_argv(" ".join(config.command), shell=config.shell, quote=config.quote)
            executor = SharedPipeExecutor(argv, policy, flag)
        else:
            executor = ProcessExecutor(policy, flag)

        ordering = OrderingMode.INPUT_ORDER if config.dry_run else config.ordering
        collector = ResultCollector(ordering, capacity=config.jobs, flag=flag,
                                    stdout=stdout, stderr=stderr)
        admission = AdmissionController(
            config.jobs,
            memfree=config.memfree,
            delay=config.delay,
            backoff=ExponentialBackoff(base_delay=config.backoff_base, max_delay=config.backoff_max),
            memory_probe=memory_probe,
        )

        resume: set[int] = set()
        if config.resume and config.joblog is not None:
            resume = JobLog.completed(config.joblog)
            logger.info("pool.resume", path=str(config.joblog), completed=len(resume))

        joblog = None
        if config.joblog is not None and not config.dry_run:
            joblog = JobLog(config.joblog, iso8601=config.joblog_8601, append=config.resume)

        return cls(config, lock, flag=flag, collector=collector, admission=admission,
                   strategy=strategy, executor=executor, joblog=joblog, resume=resume)

    # ------------------------------------------------------------------ #
    # Run
    # ------------------------------------------------------------------ #

    def run(self) -> RunSummary:
        """Drive all slots to retirement and aggregate the outcome.

        Raises:
            FileAccessError: The job log cannot be opened
        """
        if self.joblog is not None:
            self.joblog.open()

        logger.info("pool.started", jobs=self.config.jobs, total=self.lock.total_jobs,
                    ordering=self.collector.ordering.value)
        try:
            with ThreadPoolExecutor(max_workers=len(self.slots), thread_name_prefix="runpar-slot") as threads:
                futures = [threads.submit(self._guarded, slot) for slot in self.slots]
                for future in futures:
                    future.result()
        finally:
            shared = self.executor.close()
            summary = self.collector.close()
            if self.joblog is not None:
                self.joblog.close()

        if shared is not None and not shared.succeeded:
            logger.warning("pool.shared_process_failed", status=shared.status.value,
                           exit_code=shared.exit_code, signal=shared.signal)
            summary.record(shared)
        summary.fatal_error = self._fatal
        summary.interrupted = self.flag.is_set() and self._fatal is None
        logger.info("pool.finished", **summary.to_dict())
        return summary

    def _fail(self, message: str, reason: str) -> None:
        if self._fatal is None:
            self._fatal = message
        self.flag.set(reason=reason)

    def _guarded(self, slot: Slot) -> None:
        bind_context(slot=slot.number)
        try:
            self._slot_loop(slot)
        except RunparError as exc:
            logger.error("slot.failed", **exc.with_context(slot=slot.number).to_dict())
            self._fail(exc.message, "fatal")
        except Exception as exc:
            logger.exception("slot.crashed")
            self._fail(str(exc), "fatal")
        finally:
            clear_context()

    # ------------------------------------------------------------------ #
    # Slot state machine
    # ------------------------------------------------------------------ #

    def _slot_loop(self, slot: Slot) -> None:
        while True:
            if self.flag.is_set():
                slot.transition(SlotState.RETIRED)
                return

            slot.transition(SlotState.ADMITTING)
            if not self.admission.admit(self.flag):
                slot.transition(SlotState.RETIRED)
                return

            try:
                slot.transition(SlotState.CLAIMING)
                try:
                    claim = None if self.flag.is_set() else self.lock.next_batch()
                except InputReadError as exc:
                    self.collector.notice(f"runpar: {exc.message}")
                    self._fail(exc.message, "input_error")
                    slot.transition(SlotState.RETIRED)
                    return
                if claim is None:
                    slot.transition(SlotState.RETIRED)
                    return
                bind_context(seq=claim.seq)

                if claim.seq in self.resume:
                    logger.debug("job.skipped", seq=claim.seq)
                    self.collector.skip(claim.seq)
                    slot.transition(SlotState.IDLE)
                    continue

                slot.transition(SlotState.BUILDING)
                try:
                    spec = self.strategy.build(claim, slot.number)
                except CommandBuildError as exc:
                    result = JobResult.invalid(claim.seq, " ".join(self.config.command), exc.message)
                else:
                    if self.config.verbose:
                        self.collector.notice(spec.display)
                    slot.transition(SlotState.RUNNING)
                    result = self.executor.execute(spec)

                slot.transition(SlotState.FINALIZING)
                self._finalize(result)
                slot.transition(SlotState.IDLE)
            finally:
                unbind_context("seq")
                self.admission.release()

    def _finalize(self, result: JobResult) -> None:
        logger.info("job.finished", seq=result.seq, status=result.status.value,
                    exit_code=result.exit_code, duration=round(result.duration, 3))
        if self.joblog is not None:
            self.joblog.write(result)
        if result.status in _NOTICE_STATUSES and not self.config.quiet:
            self.collector.notice(f"runpar: job {result.seq}: {result.status.value}: {result.error}")
        self.collector.submit(result)
        if self.config.eta:
            self.collector.notice(self.lock.eta().render())


__all__ = ["Slot", "WorkerPool"]
