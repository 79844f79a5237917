"""Execution engine: worker pool, supervision, output collection and the job log.

Typical use::

    from runpar.execution import ShutdownFlag, WorkerPool, install_signal_handlers

    flag = ShutdownFlag()
    with install_signal_handlers(flag):
        summary = WorkerPool.from_config(config, lock, flag=flag).run()
"""

from runpar.execution.admission import AdmissionController
from runpar.execution.collector import ResultCollector
from runpar.execution.joblog import JobLog
from runpar.execution.models import JobResult, JobSpec, JobStatus, RunSummary, SlotState
from runpar.execution.pool import WorkerPool
from runpar.execution.signals import ShutdownFlag, install_signal_handlers

__all__ = [
    "AdmissionController",
    "JobLog",
    "JobResult",
    "JobSpec",
    "JobStatus",
    "ResultCollector",
    "RunSummary",
    "ShutdownFlag",
    "SlotState",
    "WorkerPool",
    "install_signal_handlers",
]
