# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Execution exceptions.
"""

from src.core.exceptions import SchedulerError


class ExecutionError(SchedulerError):
    """
    Base exception for execution errors.
    """

    pass


class PoolSaturatedError(ExecutionError):
    """
    Raised when every worker slot is busy and the pool rejects new work.
    """

    def __init__(self, job_id: str, max_workers: int) -> None:
        self.job_id = job_id
        self.max_workers = max_workers
        super().__init__(f"Executor pool is saturated ({max_workers} workers busy), job {job_id}")


class PoolShutdownError(ExecutionError):
    """
    Raised when work is submitted after shutdown started.
    """

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Executor pool is shut down, cannot run job {job_id}")


class JobAlreadyRunningError(ExecutionError):
    """
    Raised when a job already has an active execution.
    """

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} already has an active execution")


class JobCancelledError(ExecutionError):
    """
    Raised inside a task that observed a cancellation request.
    """

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} was cancelled")
