# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Execution layer for running job attempts."""

from src.core.execution.context import (
    JobContext,
    current_job_context,
    is_cancellation_requested,
    raise_if_cancelled,
)
from src.core.execution.exceptions import (
    ExecutionError,
    JobAlreadyRunningError,
    JobCancelledError,
    PoolSaturatedError,
    PoolShutdownError,
)
from src.core.execution.pool import ExecutorPool, OverflowPolicy
from src.core.execution.runner import TaskRunner, describe_error

__all__ = [
    "JobContext",
    "current_job_context",
    "is_cancellation_requested",
    "raise_if_cancelled",
    "ExecutionError",
    "JobAlreadyRunningError",
    "JobCancelledError",
    "PoolSaturatedError",
    "PoolShutdownError",
    "ExecutorPool",
    "OverflowPolicy",
    "TaskRunner",
    "describe_error",
]
