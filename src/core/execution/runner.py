# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Runs a single job attempt and turns its outcome into a JobResult."""

import asyncio
import contextvars
import functools
import inspect
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Optional

from src.core.execution.context import JobContext
from src.core.execution.exceptions import JobCancelledError
from src.core.models.job import Job, JobResult, JobStatus


def describe_error(exc: BaseException) -> str:
    """Short ``ExcType: message`` description of an exception."""
    message = str(exc)
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


class TaskRunner:
    """Executes task bodies.

    Coroutine functions are awaited on the event loop. Other callables run in
    a thread pool with the caller's context variables copied, the way
    ``asyncio.to_thread`` does it, so logging context and the job context
    are visible inside the thread.
    """

    def __init__(self, max_workers: int, thread_name_prefix: str = "job-worker") -> None:
        self._thread_pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )

    async def run(
        self,
        task: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[dict] = None,
        context: Optional[JobContext] = None,
    ) -> Any:
        """Run a task body and return its output; exceptions propagate.

        A thread-run body is awaited through ``asyncio.shield``: cancelling the
        caller leaves ``context.worker`` pending until the thread returns.
        """
        kwargs = kwargs or {}
        if inspect.iscoroutinefunction(task):
            return await task(*args, **kwargs)

        loop = asyncio.get_running_loop()
        ctx = contextvars.copy_context()
        call = functools.partial(ctx.run, task, *args, **kwargs)
        worker = loop.run_in_executor(self._thread_pool, call)
        if context is not None:
            context.worker = worker
        output = await asyncio.shield(worker)
        if inspect.isawaitable(output):
            output = await output
        return output

    async def execute(
        self,
        job: Job,
        context: JobContext,
        scheduled_for: Optional[datetime],
        clock: Callable[[], datetime],
    ) -> JobResult:
        """Run one attempt of ``job``.

        Task exceptions never escape: they become a FAILED result, and a
        cooperative JobCancelledError becomes a CANCELLED one. Only
        asyncio cancellation propagates.
        """
        started = time.perf_counter()
        error: Optional[str] = None
        output: Any = None
        try:
            output = await self.run(job.task, job.task_args, job.task_kwargs, context)
            status = JobStatus.COMPLETED
        except asyncio.CancelledError:
            raise
        except JobCancelledError as e:
            status = JobStatus.CANCELLED
            error = str(e)
        except Exception as e:
            status = JobStatus.FAILED
            error = describe_error(e)

        return JobResult(
            job_id=job.id,
            status=status,
            timestamp=clock(),
            error=error,
            duration_seconds=time.perf_counter() - started,
            attempt=context.attempt,
            scheduled_for=scheduled_for,
            output=output,
        )

    def shutdown(self, wait: bool = False) -> None:
        """Stop the thread pool; queued calls are dropped."""
        self._thread_pool.shutdown(wait=wait, cancel_futures=True)
