# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Job scheduler - in-process scheduling and execution infrastructure.

This package provides:
- Job, schedule and retry models
- Ready queue, dependency tracker and in-memory job registry
- Bounded executor pool for sync and async task bodies
- Scheduler service with a poll loop, retries and recurrences
"""

from src.core.config import SchedulerConfig
from src.core.exceptions import (
    DependencyCycleError,
    InvalidTransitionError,
    JobNotFoundError,
    JobValidationError,
    ScheduleValidationError,
    SchedulerError,
    SchedulerNotRunningError,
    UnknownPrerequisiteError,
)
from src.core.execution import (
    ExecutorPool,
    OverflowPolicy,
    current_job_context,
    is_cancellation_requested,
    raise_if_cancelled,
)
from src.core.models import (
    BackoffStrategy,
    CronSchedule,
    JobInfo,
    JobResult,
    JobStatus,
    OneTimeSchedule,
    Priority,
    RecurringSchedule,
    RetryPolicy,
    SchedulerStats,
)
from src.core.runtime import scheduler_lifespan
from src.core.services.scheduler import SchedulerService

__all__ = [
    "SchedulerConfig",
    "DependencyCycleError",
    "InvalidTransitionError",
    "JobNotFoundError",
    "JobValidationError",
    "ScheduleValidationError",
    "SchedulerError",
    "SchedulerNotRunningError",
    "UnknownPrerequisiteError",
    "ExecutorPool",
    "OverflowPolicy",
    "current_job_context",
    "is_cancellation_requested",
    "raise_if_cancelled",
    "BackoffStrategy",
    "CronSchedule",
    "JobInfo",
    "JobResult",
    "JobStatus",
    "OneTimeSchedule",
    "Priority",
    "RecurringSchedule",
    "RetryPolicy",
    "SchedulerStats",
    "scheduler_lifespan",
    "SchedulerService",
]
