"""Shared pipe executor - every job feeds one long-lived child.

In pipe mode the command is started once, lazily, when the first job
arrives. Each job writes its group of records to the child's stdin as
newline-terminated lines and flushes; the group is the flush boundary.
Writes are serialised by a lock so two jobs' lines never interleave.

The shared child inherits the parent's stdout and stderr. Its own exit
status is reported by :meth:`SharedPipeExecutor.close` after stdin has
been closed.
"""

from __future__ import annotations

import subprocess
import threading
import time

from runpar.core.logging import get_logger
from runpar.execution.models import JobResult, JobSpec, JobStatus, utcnow
from runpar.execution.signals import ShutdownFlag
from runpar.execution.supervisor import (
    EXIT_NOT_EXECUTABLE,
    EXIT_NOT_FOUND,
    SupervisionPolicy,
    terminate_group,
)

logger = get_logger(__name__)


class SharedPipeExecutor:
    """Executor writing each job's payload to one shared child's stdin."""

    def __init__(
        self,
        argv: tuple[str, ...],
        policy: SupervisionPolicy,
        flag: ShutdownFlag,
    ):
        self.argv = argv
        self.display = " ".join(argv)
        self.policy = policy
        self.flag = flag
        self._lock = threading.Lock()
        self._proc: subprocess.Popen | None = None
        self._spawn_error: tuple[int, str] | None = None
        self._broken: str | None = None
        self._started_at = utcnow()
        self._t0 = time.monotonic()

    def _ensure_started(self) -> subprocess.Popen | None:
        if self._proc is not None or self._spawn_error is not None:
            return self._proc
        self._started_at = utcnow()
        self._t0 = time.monotonic()
        try:
            self._proc = subprocess.Popen(
                self.argv,
                stdin=subprocess.PIPE,
                cwd=self.policy.workdir,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            self._spawn_error = (EXIT_NOT_FOUND, f"command not found: {exc.filename or self.argv[0]}")
        except OSError as exc:
            self._spawn_error = (EXIT_NOT_EXECUTABLE, str(exc))
        else:
            logger.debug("pipe.spawned", pid=self._proc.pid, argv=list(self.argv))
        return self._proc

    def execute(self, spec: JobSpec) -> JobResult:
        started_at = utcnow()
        t0 = time.monotonic()

        def result(status: JobStatus, **kwargs) -> JobResult:
            return JobResult(seq=spec.seq, command=spec.display, status=status,
                             passthrough=True, started_at=started_at,
                             finished_at=utcnow(), duration=time.monotonic() - t0, **kwargs)

        with self._lock:
            proc = self._ensure_started()
            if proc is None:
                code, message = self._spawn_error  # type: ignore[misc]
                return result(JobStatus.SPAWN_ERROR, exit_code=code, error=message)
            if self._broken is not None:
                return result(JobStatus.IO_ERROR, error=self._broken)
            assert proc.stdin is not None
            try:
                proc.stdin.write(spec.payload or b"")
                proc.stdin.flush()
            except OSError as exc:
                self._broken = f"shared pipe closed: {exc}"
                logger.warning("pipe.write_failed", seq=spec.seq, error=str(exc))
                return result(JobStatus.IO_ERROR, error=self._broken)
        return result(JobStatus.SUCCESS)

    def close(self) -> JobResult | None:
        """Close the shared child's stdin and wait for it to exit.

        Honours the shutdown flag while waiting. Returns None when no job
        ever started the child.
        """
        with self._lock:
            proc = self._proc
            if proc is None:
                return None
            if proc.stdin is not None and not proc.stdin.closed:
                try:
                    proc.stdin.close()
                except OSError:
                    logger.debug("pipe.close_failed", pid=proc.pid)

        status: JobStatus | None = None
        while True:
            try:
                returncode = proc.wait(timeout=self.policy.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if self.flag.is_set():
                    terminate_group(proc, self.policy.grace_period)
                    returncode = proc.returncode
                    status = JobStatus.ABORTED
                    break

        if status is None:
            if returncode == 0:
                status = JobStatus.SUCCESS
            elif returncode > 0:
                status = JobStatus.FAILURE
            else:
                status = JobStatus.SIGNALED
        logger.debug("pipe.exited", pid=proc.pid, returncode=returncode, status=status.value)
        return JobResult(
            seq=0,
            command=self.display,
            status=status,
            exit_code=returncode if returncode is not None and returncode >= 0 else None,
            signal=-returncode if returncode is not None and returncode < 0 else None,
            passthrough=True,
            started_at=self._started_at,
            finished_at=utcnow(),
            duration=time.monotonic() - self._t0,
        )


__all__ = ["SharedPipeExecutor"]
