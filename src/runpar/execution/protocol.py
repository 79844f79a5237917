"""Executor Protocol - how a built job actually gets run.

The worker pool never branches on the execution mode. It hands every
:class:`~runpar.execution.models.JobSpec` to one ``Executor`` chosen at
start-up and gets a :class:`~runpar.execution.models.JobResult` back.

ARCHITECTURE
────────────
::

    Executor (Protocol)
      ├── .execute(spec) ─ run one job, never raise for per-job failures
      └── .close()       ─ release shared resources; may report a result

    Implementations:
      ProcessExecutor    ─ one supervised child per job    (supervisor.py)
      SharedPipeExecutor ─ one long-lived child, fed bytes (pipe.py)
      DryRunExecutor     ─ print the command, run nothing  (dry.py)
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from runpar.execution.models import JobResult, JobSpec


@runtime_checkable
class Executor(Protocol):
    """Runs built jobs.

    Per-job failures (spawn errors, non-zero exits, timeouts) are
    reported in the returned ``JobResult``; ``execute`` only raises for
    bugs.
    """

    def execute(self, spec: JobSpec) -> JobResult:
        """Run one job to completion and describe how it ended."""
        ...

    def close(self) -> JobResult | None:
        """Release shared resources.

        Returns:
            A result describing a shared process, if the executor owns
            one, else None.
        """
        ...
