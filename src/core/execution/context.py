# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Per-execution context visible to running task bodies."""

import asyncio
import threading
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from typing import Optional

from src.core.execution.exceptions import JobCancelledError


@dataclass
class JobContext:
    """What a task body can know about the execution it runs in.

    ``worker`` is the executor future of a body running in a thread.
    """

    job_id: str
    attempt: int
    cancel_event: threading.Event = field(default_factory=threading.Event)
    worker: Optional[asyncio.Future] = field(default=None, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def request_cancel(self) -> None:
        self.cancel_event.set()


_job_context: ContextVar[Optional[JobContext]] = ContextVar("job_context", default=None)


def bind_job_context(context: Optional[JobContext]) -> Token:
    """Make ``context`` current for this task (and threads it hands work to)."""
    return _job_context.set(context)


def current_job_context() -> Optional[JobContext]:
    """Context of the execution running in this task or thread, if any."""
    return _job_context.get()


def is_cancellation_requested() -> bool:
    """True when the current execution has been asked to stop."""
    ctx = _job_context.get()
    return ctx is not None and ctx.cancelled


def raise_if_cancelled() -> None:
    """Raise JobCancelledError if the current execution has been asked to stop.

    Long running task bodies call this between steps to honour cancellation.
    """
    ctx = _job_context.get()
    if ctx is not None and ctx.cancelled:
        raise JobCancelledError(ctx.job_id)
