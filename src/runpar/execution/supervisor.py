"""Job Supervisor - owns one child process from spawn to exit.

Architecture:

    .. code-block:: text

        JobSupervisor.run()
        ┌──────────────────────────────────────────────────────────────┐
        │  Popen(argv, start_new_session=True)                         │
        │    │  FileNotFoundError → SPAWN_ERROR (127)                  │
        │    │  PermissionError   → SPAWN_ERROR (126)                  │
        │    ▼                                                         │
        │  communicate(timeout=slice)  ◄──┐                            │
        │    │ still running ─────────────┤ deadline / shutdown?       │
        │    │                            │   no  → next slice         │
        │    │                            │   yes → terminate group    │
        │    ▼                                                         │
        │  returncode   0 → SUCCESS   >0 → FAILURE   <0 → SIGNALED     │
        └──────────────────────────────────────────────────────────────┘

        terminate group: SIGTERM → wait grace_period → SIGKILL

Every child gets its own session, so signals reach the whole process
group (a ``sh -c`` wrapper and whatever it spawned) and never the parent.
Output is captured in full unless the run is ungrouped, in which case
the child inherits the parent's stdout and stderr.
"""

from __future__ import annotations

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from runpar.core.config.run import RunConfig
from runpar.core.logging import get_logger
from runpar.execution.models import JobResult, JobSpec, JobStatus, utcnow
from runpar.execution.signals import ShutdownFlag
from runpar.execution.timeout import Deadline

logger = get_logger(__name__)

EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126

# Upper bound on draining pipes after SIGKILL; a grandchild that left the
# process group can otherwise hold them open forever.
_DRAIN_TIMEOUT = 1.0


@dataclass(frozen=True)
class SupervisionPolicy:
    """How every child of a run is supervised."""

    timeout: float | None = None
    grace_period: float = 5.0
    poll_interval: float = 0.05
    capture: bool = True
    workdir: Path | None = None

    @classmethod
    def from_config(cls, config: RunConfig) -> SupervisionPolicy:
        return cls(
            timeout=config.timeout,
            grace_period=config.grace_period,
            poll_interval=config.poll_interval,
            capture=not config.ungroup,
            workdir=config.workdir,
        )


def signal_group(proc: subprocess.Popen, signum: int) -> bool:
    """Send ``signum`` to the child's process group; False if it is gone."""
    try:
        os.killpg(proc.pid, signum)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Group leader already reaped and the pgid reused.
        proc.send_signal(signum)
    return True


def terminate_group(proc: subprocess.Popen, grace_period: float) -> tuple[bytes, bytes]:
    """SIGTERM the group, wait ``grace_period``, then SIGKILL.

    Returns:
        Whatever output the child produced before it died.
    """
    signal_group(proc, signal.SIGTERM)
    try:
        out, err = proc.communicate(timeout=grace_period)
    except subprocess.TimeoutExpired:
        logger.debug("supervisor.force_kill", pid=proc.pid, grace_period=grace_period)
        signal_group(proc, signal.SIGKILL)
        try:
            out, err = proc.communicate(timeout=_DRAIN_TIMEOUT)
        except subprocess.TimeoutExpired as exc:
            proc.wait()
            out, err = exc.stdout, exc.stderr
    return out or b"", err or b""


class JobSupervisor:
    """Runs a single :class:`JobSpec` under the run's supervision policy."""

    def __init__(self, spec: JobSpec, policy: SupervisionPolicy, flag: ShutdownFlag):
        self.spec = spec
        self.policy = policy
        self.flag = flag

    def _result(self, status: JobStatus, started_at, t0: float, **kwargs) -> JobResult:
        return JobResult(
            seq=self.spec.seq,
            command=self.spec.display,
            status=status,
            passthrough=not self.policy.capture,
            started_at=started_at,
            finished_at=utcnow(),
            duration=time.monotonic() - t0,
            **kwargs,
        )

    def _spawn(self) -> subprocess.Popen:
        pipe = subprocess.PIPE if self.policy.capture else None
        return subprocess.Popen(
            self.spec.argv,
            stdin=subprocess.DEVNULL,
            stdout=pipe,
            stderr=pipe,
            cwd=self.policy.workdir,
            start_new_session=True,
        )

    def run(self) -> JobResult:
        started_at = utcnow()
        t0 = time.monotonic()

        try:
            proc = self._spawn()
        except FileNotFoundError as exc:
            return self._result(JobStatus.SPAWN_ERROR, started_at, t0,
                                exit_code=EXIT_NOT_FOUND, error=f"command not found: {exc.filename or self.spec.argv[0]}")
        except PermissionError as exc:
            return self._result(JobStatus.SPAWN_ERROR, started_at, t0,
                                exit_code=EXIT_NOT_EXECUTABLE, error=f"permission denied: {exc.filename or self.spec.argv[0]}")
        except OSError as exc:
            return self._result(JobStatus.SPAWN_ERROR, started_at, t0,
                                exit_code=EXIT_NOT_EXECUTABLE, error=str(exc))

        logger.debug("job.spawned", seq=self.spec.seq, slot=self.spec.slot, pid=proc.pid)
        deadline = Deadline.start(self.policy.timeout)
        killed_for: JobStatus | None = None
        out: bytes | None = b""
        err: bytes | None = b""

        try:
            while True:
                try:
                    out, err = proc.communicate(timeout=deadline.slice(self.policy.poll_interval))
                    break
                except subprocess.TimeoutExpired:
                    if deadline.is_expired():
                        killed_for = JobStatus.TIMED_OUT
                        break
                    if self.flag.is_set():
                        killed_for = JobStatus.ABORTED
                        break
        except OSError as exc:
            logger.warning("job.capture_failed", seq=self.spec.seq, error=str(exc))
            try:
                out, err = terminate_group(proc, self.policy.grace_period)
            except OSError:
                signal_group(proc, signal.SIGKILL)
                proc.wait()
                out, err = b"", b""
            returncode = proc.returncode
            return self._result(
                JobStatus.IO_ERROR, started_at, t0,
                exit_code=returncode if returncode is not None and returncode >= 0 else None,
                signal=-returncode if returncode is not None and returncode < 0 else None,
                stdout=out, stderr=err, error=str(exc),
            )

        if killed_for is not None:
            logger.info("job.terminating", seq=self.spec.seq, reason=killed_for.value,
                        timeout=self.policy.timeout)
            out, err = terminate_group(proc, self.policy.grace_period)
            returncode = proc.returncode
            return self._result(
                killed_for, started_at, t0,
                signal=-returncode if returncode is not None and returncode < 0 else None,
                stdout=out, stderr=err,
                error=(f"timed out after {self.policy.timeout}s"
                       if killed_for is JobStatus.TIMED_OUT else "aborted by shutdown"),
            )

        returncode = proc.returncode
        if returncode == 0:
            status = JobStatus.SUCCESS
        elif returncode > 0:
            status = JobStatus.FAILURE
        else:
            status = JobStatus.SIGNALED
        return self._result(
            status, started_at, t0,
            exit_code=returncode if returncode >= 0 else None,
            signal=-returncode if returncode < 0 else None,
            stdout=out or b"", stderr=err or b"",
        )


class ProcessExecutor:
    """Executor that spawns one supervised child per job."""

    def __init__(self, policy: SupervisionPolicy, flag: ShutdownFlag):
        self.policy = policy
        self.flag = flag

    def execute(self, spec: JobSpec) -> JobResult:
        return JobSupervisor(spec, self.policy, self.flag).run()

    def close(self) -> JobResult | None:
        return None


__all__ = [
    "EXIT_NOT_EXECUTABLE",
    "EXIT_NOT_FOUND",
    "JobSupervisor",
    "ProcessExecutor",
    "SupervisionPolicy",
    "signal_group",
    "terminate_group",
]
