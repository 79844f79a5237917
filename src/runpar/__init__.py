"""
runpar - run commands in parallel over a stream of inputs.

Core concepts:
- InputSource / InputLock: lazy records and the shared, sequence-numbering cursor
- WorkerPool: K slots that admit, claim, build, run and finalize jobs
- JobSupervisor: one child process per job, with timeout and graceful kill
- ResultCollector: output as completed or in input order
- JobLog: durable per-job record, the basis of resume
"""

__version__ = "0.1.0"
