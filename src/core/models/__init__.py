# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Pydantic models for the scheduler."""

from src.core.models.cron import CronExpression
from src.core.models.retry import BackoffStrategy, RetryPolicy
from src.core.models.schedule import (
    CronSchedule,
    OneTimeSchedule,
    RecurringSchedule,
    Schedule,
    next_due,
    parse_schedule,
    resume_due,
    validate_schedule,
)
from src.core.models.job import (
    Job,
    JobInfo,
    JobResult,
    JobStatus,
    Priority,
    SchedulerStats,
    TERMINAL_STATUSES,
    can_transition,
)

__all__ = [
    "CronExpression",
    "BackoffStrategy",
    "RetryPolicy",
    "CronSchedule",
    "OneTimeSchedule",
    "RecurringSchedule",
    "Schedule",
    "next_due",
    "parse_schedule",
    "resume_due",
    "validate_schedule",
    "Job",
    "JobInfo",
    "JobResult",
    "JobStatus",
    "Priority",
    "SchedulerStats",
    "TERMINAL_STATUSES",
    "can_transition",
]
