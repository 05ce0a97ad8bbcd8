# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Bounded pool of concurrent job executions."""

import asyncio
import functools
import inspect
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from src.core.execution.context import JobContext, bind_job_context
from src.core.execution.exceptions import (
    JobAlreadyRunningError,
    PoolSaturatedError,
    PoolShutdownError,
)
from src.core.execution.runner import TaskRunner
from src.core.models.job import Job, JobResult, JobStatus
from src.core.observability import (
    ExecutionScope,
    LogLevel,
    create_execution_event,
    get_logger,
)

logger = get_logger(__name__)

ResultHandler = Callable[[JobResult], Union[Awaitable[Any], Any]]

_EVENT_STATUS = {
    JobStatus.COMPLETED: ("job_complete", "success", LogLevel.INFO),
    JobStatus.FAILED: ("job_fail", "failed", LogLevel.WARN),
    JobStatus.CANCELLED: ("job_cancelled", "cancelled", LogLevel.INFO),
}


class OverflowPolicy(str, Enum):
    """What ``submit`` does when every worker is busy."""

    REJECT = "reject"
    QUEUE = "queue"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutorPool:
    """Runs job attempts with at most ``max_workers`` executing at once.

    Every submitted attempt is an asyncio task. A job id can have only one
    active execution, which is what keeps a job from overlapping itself.
    """

    def __init__(
        self,
        max_workers: int = 4,
        overflow_policy: OverflowPolicy = OverflowPolicy.REJECT,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Initialize the pool.

        :param max_workers: Number of concurrent executions
        :param overflow_policy: Reject or queue work submitted while saturated
        :param clock: Source of result timestamps
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.overflow_policy = OverflowPolicy(overflow_policy)
        self._clock = clock or _utcnow
        self._runner = TaskRunner(max_workers)
        self._slots = asyncio.Semaphore(max_workers)
        self._running: dict[str, asyncio.Task] = {}
        self._contexts: dict[str, JobContext] = {}
        # cancelled attempts whose thread still holds a slot
        self._abandoned: set[str] = set()
        self._shutting_down = False

        logger.info(
            f"ExecutorPool initialized (max_workers={max_workers}, "
            f"overflow_policy={self.overflow_policy.value})"
        )

    @property
    def active_count(self) -> int:
        return len(self._running)

    @property
    def is_shut_down(self) -> bool:
        return self._shutting_down

    def has_capacity(self) -> bool:
        return len(self._running) < self.max_workers

    def running_job_ids(self) -> set[str]:
        return set(self._running)

    def is_running(self, job_id: str) -> bool:
        return job_id in self._running

    def submit(self, job: Job, on_result: ResultHandler) -> asyncio.Task:
        """Start an attempt of ``job`` and return its task immediately.

        ``on_result`` receives the JobResult (it may be a coroutine function)
        unless the execution was cancelled.

        :raises PoolShutdownError: After shutdown started
        :raises JobAlreadyRunningError: If the job already has an active execution
        :raises PoolSaturatedError: If saturated and the policy is REJECT
        """
        if self._shutting_down:
            raise PoolShutdownError(job.id)
        if job.id in self._running:
            raise JobAlreadyRunningError(job.id)
        if self.overflow_policy == OverflowPolicy.REJECT and not self.has_capacity():
            logger.event(
                create_execution_event(
                    "pool_saturated",
                    level=LogLevel.WARN,
                    job_id=job.id,
                    job_name=job.name,
                    active_workers=self.active_count,
                    max_workers=self.max_workers,
                )
            )
            raise PoolSaturatedError(job.id, self.max_workers)

        context = JobContext(job_id=job.id, attempt=job.retry_count + 1)
        task = asyncio.create_task(
            self._execute(job, context, job.next_due_at, on_result),
            name=f"job-{job.id}",
        )
        self._running[job.id] = task
        self._contexts[job.id] = context
        task.add_done_callback(functools.partial(self._on_task_done, job.id))
        return task

    def cancel(self, job_id: str) -> bool:
        """Ask a running execution to stop; its result will be discarded.

        Sets the job context's cancellation flag for cooperative task bodies
        and cancels the asyncio task. A thread already running a plain
        callable keeps running until it returns, and keeps its worker slot
        (and its place in ``active_count``) until then.

        :returns: True if an active execution was found
        """
        task = self._running.get(job_id)
        if task is None or task.done():
            return False
        self._contexts[job_id].request_cancel()
        task.cancel()
        logger.info(f"Cancellation requested for running job {job_id}")
        return True

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Stop accepting work, drain active executions, then force the rest.

        :param timeout: Seconds to wait for active executions to finish
        """
        self._shutting_down = True
        tasks = [task for task in self._running.values() if not task.done()]
        cancelled = 0

        if tasks:
            logger.info(f"ExecutorPool shutdown: waiting for {len(tasks)} running jobs")
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for job_id, task in list(self._running.items()):
                if task in pending:
                    self._contexts[job_id].request_cancel()
                    task.cancel()
                    cancelled += 1
            if pending:
                logger.warning(f"ExecutorPool shutdown: cancelled {len(pending)} jobs after {timeout}s")
                await asyncio.gather(*pending, return_exceptions=True)

        self._runner.shutdown(wait=False)
        logger.event(
            create_execution_event(
                "pool_shutdown",
                active_workers=cancelled,
                max_workers=self.max_workers,
            )
        )

    async def _execute(
        self,
        job: Job,
        context: JobContext,
        scheduled_for: Optional[datetime],
        on_result: ResultHandler,
    ) -> Optional[JobResult]:
        """Run one attempt and deliver its result.

        :param job: Job to run
        :param context: Cancellation flag and attempt number
        :param scheduled_for: Due time the attempt was dispatched for
        :param on_result: Result handler
        """
        current = asyncio.current_task()
        bind_job_context(context)
        holds_slot = False
        try:
            await self._slots.acquire()
            holds_slot = True
            with ExecutionScope(job_id=job.id):
                logger.event(
                    create_execution_event(
                        "job_start",
                        job_name=job.name,
                        attempt=context.attempt,
                        active_workers=self.active_count,
                        max_workers=self.max_workers,
                    )
                )
                result = await self._runner.execute(job, context, scheduled_for, self._clock)

                if context.cancelled:
                    logger.info(f"Discarding result of cancelled job {job.id}")
                    return None

                event, status, level = _EVENT_STATUS[result.status]
                logger.event(
                    create_execution_event(
                        event,
                        level=level,
                        job_name=job.name,
                        attempt=context.attempt,
                        status=status,
                        error=result.error,
                        duration_ms=result.duration_seconds * 1000,
                    )
                )
                await self._deliver(on_result, result)
                return result
        except asyncio.CancelledError:
            worker = context.worker
            if holds_slot and worker is not None and not worker.done():
                holds_slot = False
                self._hold_until_done(job.id, current, worker)
            logger.event(
                create_execution_event(
                    "job_cancelled",
                    job_id=job.id,
                    job_name=job.name,
                    attempt=context.attempt,
                    status="cancelled",
                )
            )
            raise
        finally:
            if holds_slot:
                self._slots.release()
            if job.id not in self._abandoned and self._running.get(job.id) is current:
                del self._running[job.id]
                self._contexts.pop(job.id, None)

    def _hold_until_done(self, job_id: str, task: asyncio.Task, worker: asyncio.Future) -> None:
        """Keep the slot of a cancelled attempt until its thread returns."""
        self._abandoned.add(job_id)
        logger.warning(f"Job {job_id} cancelled while its thread is still running; slot held until it returns")
        worker.add_done_callback(functools.partial(self._release_abandoned, job_id, task))

    def _release_abandoned(self, job_id: str, task: asyncio.Task, worker: asyncio.Future) -> None:
        self._abandoned.discard(job_id)
        self._slots.release()
        if self._running.get(job_id) is task:
            del self._running[job_id]
            self._contexts.pop(job_id, None)
        error = None if worker.cancelled() else worker.exception()
        if error is not None:
            logger.debug(f"Discarded error of cancelled job {job_id}: {error}")
        logger.info(f"Thread of cancelled job {job_id} returned; slot released")

    async def _deliver(self, on_result: ResultHandler, result: JobResult) -> None:
        try:
            outcome = on_result(result)
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Result handler for job {result.job_id} failed: {e}", exc_info=True)

    def _on_task_done(self, job_id: str, task: asyncio.Task) -> None:
        """Forget the task and log any exception that escaped it."""
        if job_id not in self._abandoned and self._running.get(job_id) is task:
            del self._running[job_id]
            self._contexts.pop(job_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Execution task for job {job_id} crashed: {exc}", exc_info=exc)
