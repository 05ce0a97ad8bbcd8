# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""
Logging for the job scheduler.

Call ``initialize_logging`` once at startup, then use ``get_logger(__name__)``
per module. Scheduler decisions are logged as ``SchedulerEvent`` records and
executor activity as ``ExecutionEvent`` records; both pick up the correlation,
job and execution IDs of the active ``ObservabilityScope``.
"""

from src.core.observability.context import (
    ContextData,
    ObservabilityContextManager,
    ObservabilityScope,
    ExecutionScope,
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    get_job_id,
    get_execution_id,
    clear_context,
)

from src.core.observability.events import (
    LogStream,
    LogLevel,
    SchedulerEvent,
    ExecutionEvent,
    create_scheduler_event,
    create_execution_event,
)

from src.core.observability.logger import (
    LogFormatter,
    JSONFormatter,
    ConsoleFormatter,
    StructuredLogger,
    LoggerFactory,
    initialize_logging,
    get_logger,
)


__all__ = [
    "ContextData",
    "ObservabilityContextManager",
    "ObservabilityScope",
    "ExecutionScope",
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "get_job_id",
    "get_execution_id",
    "clear_context",
    "LogStream",
    "LogLevel",
    "SchedulerEvent",
    "ExecutionEvent",
    "create_scheduler_event",
    "create_execution_event",
    "LogFormatter",
    "JSONFormatter",
    "ConsoleFormatter",
    "StructuredLogger",
    "LoggerFactory",
    "initialize_logging",
    "get_logger",
]
