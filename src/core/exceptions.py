# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Scheduler exceptions.
"""

from typing import Any


class SchedulerError(Exception):
    """
    Base exception for scheduler errors.
    """

    pass


class JobNotFoundError(SchedulerError):
    """
    Raised when a job ID is not known to the scheduler.
    """

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class JobValidationError(SchedulerError):
    """
    Raised when a job is rejected at submission.
    """

    pass


class ScheduleValidationError(JobValidationError):
    """
    Raised for malformed, inconsistent or unsatisfiable schedules.
    """

    def __init__(self, message: str, schedule: Any = None) -> None:
        self.schedule = schedule
        super().__init__(message)


class UnknownPrerequisiteError(JobValidationError):
    """
    Raised when a job depends on a job ID the scheduler has never seen.
    """

    def __init__(self, job_id: str, prerequisite_id: str) -> None:
        self.job_id = job_id
        self.prerequisite_id = prerequisite_id
        super().__init__(f"Job {job_id} depends on unknown job {prerequisite_id}")


class DependencyCycleError(JobValidationError):
    """
    Raised when a dependency edge would close a cycle.
    """

    def __init__(self, job_id: str, prerequisite_id: str) -> None:
        self.job_id = job_id
        self.prerequisite_id = prerequisite_id
        super().__init__(
            f"Dependency {job_id} -> {prerequisite_id} would create a dependency cycle"
        )


class InvalidTransitionError(SchedulerError):
    """
    Raised when a job status change is not allowed by the lifecycle.
    """

    def __init__(self, job_id: str, current: Any, target: Any) -> None:
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(
            f"Job {job_id} cannot transition from {_name(current)} to {_name(target)}"
        )


class SchedulerNotRunningError(SchedulerError):
    """
    Raised when work is submitted to, or a restart attempted on, a stopped scheduler.
    """

    pass


def _name(status: Any) -> str:
    return getattr(status, "value", str(status))
