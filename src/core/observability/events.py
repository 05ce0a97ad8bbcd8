# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""
Typed event definitions for structured logging.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from src.core.observability.context import (
    get_correlation_id,
    get_execution_id,
    get_job_id,
)


class LogStream(str, Enum):
    """
    Log stream identifiers.
    """

    SCHEDULER = "scheduler_logs"
    EXECUTION = "execution_logs"


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


SchedulerEventType = Literal[
    "scheduler_start",
    "scheduler_stop",
    "job_submit",
    "job_dispatch",
    "job_defer",
    "job_retry",
    "job_retire",
    "job_cancel",
    "job_pause",
    "job_resume",
    "error",
]


class SchedulerEvent(BaseModel):
    """Scheduler-level log event for queue and lifecycle decisions."""

    model_config = ConfigDict(use_enum_values=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stream: Literal[LogStream.SCHEDULER] = LogStream.SCHEDULER
    correlation_id: Optional[str] = None
    level: LogLevel = LogLevel.INFO
    event: SchedulerEventType
    job_id: Optional[str] = None
    job_name: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    due_at: Optional[datetime] = None
    reason: Optional[str] = None
    retry_count: Optional[int] = None
    delay_seconds: Optional[float] = None
    queue_size: Optional[int] = None
    error: Optional[str] = None


ExecutionEventType = Literal[
    "job_start",
    "job_complete",
    "job_fail",
    "job_cancelled",
    "pool_saturated",
    "pool_shutdown",
    "error",
]


class ExecutionEvent(BaseModel):
    """Execution-level log event for the executor pool."""

    model_config = ConfigDict(use_enum_values=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stream: Literal[LogStream.EXECUTION] = LogStream.EXECUTION
    correlation_id: Optional[str] = None
    level: LogLevel = LogLevel.INFO
    event: ExecutionEventType
    duration_ms: Optional[float] = None
    status: Optional[Literal["success", "failed", "cancelled", "error"]] = None
    error: Optional[str] = None
    job_id: Optional[str] = None
    job_name: Optional[str] = None
    execution_id: Optional[str] = None
    attempt: Optional[int] = None
    active_workers: Optional[int] = None
    max_workers: Optional[int] = None


def truncate(text: Optional[str], max_length: int = 200) -> Optional[str]:
    """Truncate text to max length with ellipsis.

    :param text: Text to truncate
    :type text: Optional[str]
    :param max_length: Maximum length
    :type max_length: int
    :returns: Truncated text or None
    :rtype: Optional[str]
    """
    if text is None:
        return None
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def create_scheduler_event(
    event: SchedulerEventType,
    level: LogLevel = LogLevel.INFO,
    **kwargs: Any,
) -> SchedulerEvent:
    """Create a scheduler event with context auto-populated.

    :param event: Event type
    :type event: SchedulerEventType
    :param level: Log level
    :type level: LogLevel
    :param kwargs: Additional event fields
    :returns: SchedulerEvent instance
    :rtype: SchedulerEvent
    """
    if "error" in kwargs:
        kwargs["error"] = truncate(kwargs["error"])
    return SchedulerEvent(
        event=event,
        level=level,
        correlation_id=kwargs.pop("correlation_id", get_correlation_id()),
        **kwargs,
    )


def create_execution_event(
    event: ExecutionEventType,
    level: LogLevel = LogLevel.INFO,
    **kwargs: Any,
) -> ExecutionEvent:
    """Create an execution event with context auto-populated."""
    if "error" in kwargs:
        kwargs["error"] = truncate(kwargs["error"])
    return ExecutionEvent(
        event=event,
        level=level,
        correlation_id=kwargs.pop("correlation_id", get_correlation_id()),
        execution_id=kwargs.pop("execution_id", get_execution_id()),
        job_id=kwargs.pop("job_id", get_job_id()),
        **kwargs,
    )
