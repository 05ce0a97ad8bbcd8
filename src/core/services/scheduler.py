# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""In-process job scheduler: ready queue, poll loop and result handling."""

import asyncio
import inspect
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Callable, Iterable, Optional

from pydantic import ValidationError

from src.core.exceptions import (
    InvalidTransitionError,
    JobNotFoundError,
    JobValidationError,
    SchedulerNotRunningError,
    UnknownPrerequisiteError,
)
from src.core.execution.exceptions import PoolSaturatedError, PoolShutdownError
from src.core.execution.pool import ExecutorPool, OverflowPolicy
from src.core.models.job import (
    Job,
    JobInfo,
    JobResult,
    JobStatus,
    Priority,
    ResultCallback,
    SchedulerStats,
)
from src.core.models.retry import RetryPolicy
from src.core.models.schedule import (
    next_due,
    parse_schedule,
    resume_due,
    validate_schedule,
)
from src.core.observability import LogLevel, create_scheduler_event, get_logger
from src.core.services.dependencies import DependencyTracker
from src.core.services.ready_queue import ReadyQueue
from src.core.services.retry import plan_retry
from src.core.storage.job_registry import JobRegistry

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SchedulerService:
    """Schedules jobs and hands due ones to an executor pool.

    Queue and registry state is only touched while holding ``self._lock``;
    results from the pool are serialized through the same lock.
    """

    def __init__(
        self,
        max_workers: int = 4,
        poll_interval_seconds: float = 0.1,
        overflow_policy: OverflowPolicy = OverflowPolicy.REJECT,
        retry_base_delay_seconds: float = 1.0,
        dependency_poll_delay_seconds: float = 0.1,
        dependency_poll_max_delay_seconds: float = 5.0,
        shutdown_timeout_seconds: float = 30.0,
        retired_job_limit: int = 1000,
        clock: Optional[Callable[[], datetime]] = None,
        pool: Optional[ExecutorPool] = None,
    ) -> None:
        """Initialize the scheduler.

        :param max_workers: Concurrent executions in the default pool
        :param poll_interval_seconds: Upper bound on the wait between poll cycles
        :param overflow_policy: Pool behaviour when all workers are busy
        :param retry_base_delay_seconds: Base delay of the default retry policy
        :param dependency_poll_delay_seconds: First delay for jobs waiting on prerequisites
        :param dependency_poll_max_delay_seconds: Cap of the dependency wait backoff
        :param shutdown_timeout_seconds: Time running jobs get to finish on stop
        :param retired_job_limit: Retired jobs kept for status and history queries
        :param clock: Source of the current time (timezone-aware UTC)
        :param pool: Executor pool to use instead of building one
        """
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        self._clock = clock or _utcnow
        self._poll_interval = poll_interval_seconds
        self._retry_base_delay = retry_base_delay_seconds
        self._dependency_delay = dependency_poll_delay_seconds
        self._dependency_max_delay = dependency_poll_max_delay_seconds
        self._shutdown_timeout = shutdown_timeout_seconds

        self._pool = pool or ExecutorPool(
            max_workers=max_workers,
            overflow_policy=overflow_policy,
            clock=self._clock,
        )
        self._queue = ReadyQueue()
        self._tracker = DependencyTracker()
        self._registry = JobRegistry(
            retired_limit=retired_job_limit,
            on_evict=self._tracker.forget,
        )
        self._stats = SchedulerStats()
        self._paused_due: dict[str, Optional[datetime]] = {}
        self._watchers: dict[str, list[asyncio.Queue]] = defaultdict(list)

        self._lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._running = False
        self._stopped = False
        self._task: Optional[asyncio.Task] = None

        logger.info(
            f"SchedulerService initialized (poll_interval={poll_interval_seconds}s, "
            f"max_workers={self._pool.max_workers})"
        )

    @classmethod
    def from_config(cls, config: Any, clock: Optional[Callable[[], datetime]] = None) -> "SchedulerService":
        """Build a scheduler from a SchedulerConfig."""
        return cls(
            max_workers=config.max_workers,
            poll_interval_seconds=config.poll_interval_seconds,
            overflow_policy=config.overflow_policy,
            retry_base_delay_seconds=config.retry_base_delay_seconds,
            dependency_poll_delay_seconds=config.dependency_poll_delay_seconds,
            dependency_poll_max_delay_seconds=config.dependency_poll_max_delay_seconds,
            shutdown_timeout_seconds=config.shutdown_timeout_seconds,
            retired_job_limit=config.retired_job_limit,
            clock=clock,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pool(self) -> ExecutorPool:
        return self._pool

    def _now(self) -> datetime:
        return self._clock()

    def _wake(self) -> None:
        self._wakeup.set()

    # Public API

    async def submit_job(
        self,
        name: str,
        task: Callable[..., Any],
        schedule: Any,
        priority: Priority = Priority.MEDIUM,
        max_retries: int = 3,
        depends_on: Iterable[str] = (),
        *,
        args: tuple = (),
        kwargs: Optional[dict[str, Any]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        metadata: Optional[dict[str, Any]] = None,
        on_result: Optional[ResultCallback] = None,
        job_id: Optional[str] = None,
    ) -> str:
        """Validate and register a job, queueing its first occurrence.

        :param name: Display name
        :param task: Callable or coroutine function run on every attempt
        :param schedule: Schedule model or its dict form
        :param priority: Tie-break among jobs due at the same time
        :param max_retries: Retries per occurrence after a failed attempt
        :param depends_on: IDs of jobs that must have COMPLETED first
        :param args: Positional arguments for the task
        :param kwargs: Keyword arguments for the task
        :param retry_policy: Backoff policy, defaults to exponential with the configured base
        :param metadata: Free-form data kept with the job
        :param on_result: Called with every delivered JobResult
        :param job_id: Explicit job ID, generated when omitted
        :returns: The job ID
        :raises JobValidationError: On invalid schedules, arguments or dependencies
        :raises SchedulerNotRunningError: If the scheduler was stopped
        """
        if self._stopped:
            raise SchedulerNotRunningError("Scheduler has been stopped")
        if not callable(task):
            raise JobValidationError(f"Task of job '{name}' is not callable")

        parsed = parse_schedule(schedule)
        now = self._now()
        first_due = validate_schedule(parsed, now)
        prerequisites = list(dict.fromkeys(depends_on))

        try:
            job = Job(
                name=name,
                task=task,
                task_args=tuple(args),
                task_kwargs=kwargs or {},
                schedule=parsed,
                priority=priority,
                max_retries=max_retries,
                retry_policy=retry_policy or RetryPolicy(base_delay_seconds=self._retry_base_delay),
                depends_on=set(prerequisites),
                metadata=metadata or {},
                on_result=on_result,
                **({"id": job_id} if job_id is not None else {}),
            )
        except ValidationError as exc:
            messages = "; ".join(err["msg"] for err in exc.errors())
            raise JobValidationError(f"Invalid job '{name}': {messages}") from exc

        async with self._lock:
            if self._registry.exists(job.id) or job.id in self._tracker:
                raise JobValidationError(f"Job {job.id} already exists")
            for prerequisite_id in prerequisites:
                if prerequisite_id != job.id and not self._is_known(prerequisite_id):
                    raise UnknownPrerequisiteError(job.id, prerequisite_id)
            self._tracker.register(job.id, prerequisites)

            self._registry.create(job)
            job.next_due_at = first_due
            self._queue.push(job.id, first_due, job.priority)
            self._stats.submitted += 1

            logger.event(
                create_scheduler_event(
                    "job_submit",
                    job_id=job.id,
                    job_name=job.name,
                    priority=job.priority.name,
                    due_at=first_due,
                    queue_size=len(self._queue),
                )
            )

        self._wake()
        return job.id

    async def cancel_job(self, job_id: str, reason: str = "Cancelled by user") -> bool:
        """Cancel a job; safe to call repeatedly.

        A queued occurrence is removed so it never runs. A running execution
        is asked to stop and its result is discarded.

        :returns: False if the job is unknown, retired or already cancelled
        """
        async with self._lock:
            job = self._registry.get(job_id)
            if job is None or job.status == JobStatus.CANCELLED:
                return False

            was_running = self._pool.cancel(job_id)
            self._queue.remove(job_id)
            job.cancel(reason)
            self._tracker.record_status(job_id, JobStatus.CANCELLED)
            self._stats.cancelled += 1

            logger.event(
                create_scheduler_event(
                    "job_cancel",
                    job_id=job.id,
                    job_name=job.name,
                    status=job.status.value,
                    reason=f"{reason} (interrupted running execution)" if was_running else reason,
                )
            )
            self._retire(job, reason)

        return True

    async def pause_job(self, job_id: str) -> None:
        """Stop a job from being dispatched until resumed.

        A running job finishes its current attempt first and is then paused.

        :raises JobNotFoundError: If the job is unknown
        :raises InvalidTransitionError: If the job is retired
        """
        async with self._lock:
            job = self._require_active(job_id, JobStatus.PAUSED)

            if job.status == JobStatus.PAUSED or job.pause_requested:
                return
            if job.status == JobStatus.RUNNING:
                job.pause_requested = True
                reason = "pause requested while running"
            else:
                entry = self._queue.get(job_id)
                self._paused_due[job_id] = entry.due_at if entry else job.next_due_at
                self._queue.remove(job_id)
                job.pause()
                reason = None

            logger.event(
                create_scheduler_event(
                    "job_pause",
                    job_id=job.id,
                    job_name=job.name,
                    status=job.status.value,
                    reason=reason,
                )
            )

    async def resume_job(self, job_id: str) -> None:
        """Make a paused job schedulable again, recomputing its due time from now.

        :raises JobNotFoundError: If the job is unknown
        :raises InvalidTransitionError: If the job is not paused
        """
        async with self._lock:
            job = self._require_active(job_id, JobStatus.SCHEDULED)

            if job.status == JobStatus.RUNNING and job.pause_requested:
                job.pause_requested = False
                logger.event(
                    create_scheduler_event(
                        "job_resume",
                        job_id=job.id,
                        job_name=job.name,
                        status=job.status.value,
                        reason="pending pause withdrawn",
                    )
                )
                return
            if job.status != JobStatus.PAUSED:
                raise InvalidTransitionError(job_id, job.status, JobStatus.SCHEDULED)

            now = self._now()
            due = resume_due(job.schedule, self._paused_due.pop(job_id, None), now)
            if due is None:
                job.cancel("Schedule exhausted while paused")
                self._tracker.record_status(job_id, JobStatus.CANCELLED)
                self._retire(job, "schedule exhausted while paused")
                return

            job.resume(due)
            self._queue.push(job.id, due, job.priority)

            logger.event(
                create_scheduler_event(
                    "job_resume",
                    job_id=job.id,
                    job_name=job.name,
                    status=job.status.value,
                    due_at=due,
                )
            )

        self._wake()

    async def add_dependency(self, job_id: str, prerequisite_id: str) -> None:
        """Make an active job wait for another job to complete.

        :raises JobNotFoundError: If the job is unknown
        :raises InvalidTransitionError: If the job is retired
        :raises UnknownPrerequisiteError: If the prerequisite is unknown
        :raises DependencyCycleError: If the edge would close a cycle
        """
        async with self._lock:
            job = self._require_active(job_id, JobStatus.SCHEDULED)
            if not self._is_known(prerequisite_id):
                raise UnknownPrerequisiteError(job_id, prerequisite_id)
            self._tracker.add_dependency(job_id, prerequisite_id)
            job.depends_on.add(prerequisite_id)
            logger.info(f"Job {job_id} now depends on {prerequisite_id}")

    def get_job_status(self, job_id: str) -> JobStatus:
        """Current status of an active or retired job.

        :raises JobNotFoundError: If the job is unknown
        """
        return self._require_known(job_id).status

    def get_execution_history(self, job_id: str) -> list[JobResult]:
        """Results of every attempt, oldest first.

        :raises JobNotFoundError: If the job is unknown
        """
        return list(self._require_known(job_id).history)

    def get_job(self, job_id: str) -> JobInfo:
        return self._require_known(job_id).info()

    def list_jobs(self, status: Optional[JobStatus] = None) -> list[JobInfo]:
        return [job.info() for job in self._registry.list(status)]

    def get_statistics(self) -> SchedulerStats:
        by_status: dict[str, int] = {}
        for job in self._registry.list():
            by_status[job.status.value] = by_status.get(job.status.value, 0) + 1
        return self._stats.model_copy(
            update={
                "jobs_by_status": by_status,
                "queue_size": len(self._queue),
                "running": self._pool.active_count,
                "max_workers": self._pool.max_workers,
            }
        )

    async def watch_job(
        self,
        job_id: str,
        timeout: float = 60.0,
    ) -> AsyncGenerator[JobResult, None]:
        """Stream results of a job as they are delivered.

        Ends when the job is retired or no result arrives within ``timeout``.

        :param job_id: Job to watch
        :param timeout: Seconds to wait for each result
        :yields: JobResult
        :raises JobNotFoundError: If the job is unknown
        """
        self._require_known(job_id)
        if not self._registry.is_active(job_id):
            return

        queue: asyncio.Queue = asyncio.Queue()
        self._watchers[job_id].append(queue)
        try:
            while True:
                try:
                    result = await asyncio.wait_for(queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    break
                if result is None:
                    break
                yield result
        finally:
            watchers = self._watchers.get(job_id)
            if watchers and queue in watchers:
                watchers.remove(queue)
                if not watchers:
                    del self._watchers[job_id]

    async def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no job is active.

        :returns: True once idle, False if ``timeout`` elapsed first
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while len(self._registry) > 0:
            if deadline is not None and loop.time() >= deadline:
                return False
            await asyncio.sleep(self._poll_interval)
        return True

    # Lifecycle

    async def start(self) -> None:
        """Start the poll loop as a background task."""
        if self._stopped:
            raise SchedulerNotRunningError("Scheduler has been stopped and cannot be restarted")
        if self._running:
            logger.warning("SchedulerService already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._scheduler_loop(), name="scheduler-loop")
        self._task.add_done_callback(self._on_task_done)
        logger.event(
            create_scheduler_event(
                "scheduler_start",
                queue_size=len(self._queue),
            )
        )

    async def stop(self) -> None:
        """Stop the poll loop and shut the executor pool down.

        Running executions get ``shutdown_timeout_seconds`` to finish; those
        still running afterwards are cancelled.
        """
        if self._stopped:
            return

        self._running = False
        self._stopped = True
        self._wake()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await self._pool.shutdown(timeout=self._shutdown_timeout)

        async with self._lock:
            for job in self._registry.get_active():
                if job.status == JobStatus.RUNNING:
                    job.cancel("Interrupted by scheduler shutdown")
                    self._tracker.record_status(job.id, JobStatus.CANCELLED)
                    self._stats.cancelled += 1
                    self._retire(job, "interrupted by shutdown")
            for watchers in self._watchers.values():
                for queue in watchers:
                    queue.put_nowait(None)

        logger.event(
            create_scheduler_event(
                "scheduler_stop",
                queue_size=len(self._queue),
            )
        )

    async def run_pending(self) -> int:
        """Run one poll cycle.

        :returns: Number of jobs dispatched
        """
        async with self._lock:
            return self._dispatch_due(self._now())

    def _on_task_done(self, task: asyncio.Task) -> None:
        """Callback invoked when the scheduler task finishes.

        Logs unexpected crashes so they are not silently swallowed.
        """
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(
                f"Scheduler loop crashed unexpectedly, no job will be dispatched: {exc}",
                exc_info=exc,
            )

    async def _scheduler_loop(self) -> None:
        """Dispatch due jobs, then wait for the next due time, the poll tick or a wakeup."""
        while self._running:
            self._wakeup.clear()
            try:
                await self.run_pending()
            except Exception as e:
                logger.error(f"Error in scheduler loop: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._next_wait())
            except asyncio.TimeoutError:
                pass

    def _next_wait(self) -> float:
        entry = self._queue.peek()
        if entry is None:
            return self._poll_interval
        remaining = (entry.due_at - self._now()).total_seconds()
        if remaining <= 0:
            # still due after a cycle: pool saturated, wait for a result or the tick
            return self._poll_interval
        return min(self._poll_interval, remaining)

    # Dispatch

    def _dispatch_due(self, now: datetime) -> int:
        dispatched = 0
        while True:
            entry = self._queue.peek()
            if entry is None or entry.due_at > now:
                break
            self._queue.pop()

            job = self._registry.get(entry.job_id)
            if job is None or job.status in (JobStatus.PAUSED, JobStatus.CANCELLED):
                logger.debug(f"Dropping queue entry of inactive job {entry.job_id}")
                continue

            if job.status == JobStatus.RUNNING or self._pool.is_running(job.id):
                self._defer(job, now + timedelta(seconds=self._poll_interval), "previous execution still running")
                continue

            if not self._tracker.can_execute(job.id):
                delay = min(self._dependency_delay * (2**job.deferrals), self._dependency_max_delay)
                job.deferrals += 1
                waiting_on = ", ".join(sorted(self._tracker.blocking(job.id)))
                self._defer(job, now + timedelta(seconds=delay), f"waiting for {waiting_on}")
                continue

            try:
                self._pool.submit(job, self._on_result)
            except (PoolSaturatedError, PoolShutdownError) as e:
                self._queue.restore(entry)
                logger.debug(f"Dispatch of job {job.id} postponed: {e}")
                break

            job.start(now)
            self._stats.executions += 1
            dispatched += 1
            logger.event(
                create_scheduler_event(
                    "job_dispatch",
                    job_id=job.id,
                    job_name=job.name,
                    priority=job.priority.name,
                    due_at=entry.due_at,
                    retry_count=job.retry_count,
                    queue_size=len(self._queue),
                )
            )
        return dispatched

    def _defer(self, job: Job, due: datetime, reason: str) -> None:
        job.next_due_at = due
        self._queue.push(job.id, due, job.priority)
        logger.event(
            create_scheduler_event(
                "job_defer",
                level=LogLevel.DEBUG,
                job_id=job.id,
                job_name=job.name,
                due_at=due,
                reason=reason,
            )
        )

    # Results

    async def _on_result(self, result: JobResult) -> None:
        """Apply an execution result to the job and notify listeners."""
        async with self._lock:
            job = self._registry.get(result.job_id)
            if job is None or job.status != JobStatus.RUNNING:
                logger.debug(f"Ignoring result for inactive job {result.job_id}")
                return

            for queue in self._watchers.get(job.id, ()):
                queue.put_nowait(result)

            now = self._now()
            if result.status == JobStatus.COMPLETED:
                self._handle_success(job, result, now)
            elif result.status == JobStatus.CANCELLED:
                job.history.append(result)
                job.cancel(result.error or "Cancelled by task")
                self._tracker.record_status(job.id, JobStatus.CANCELLED)
                self._stats.cancelled += 1
                self._retire(job, "cancelled by task")
            else:
                self._handle_failure(job, result, now)

        self._wake()
        await self._notify(job, result)

    def _handle_success(self, job: Job, result: JobResult, now: datetime) -> None:
        job.complete(result)
        self._stats.completed += 1
        self._tracker.record_status(job.id, JobStatus.COMPLETED)
        self._release_dependents(job.id, now)
        self._next_occurrence(job, now, "schedule exhausted")

    def _handle_failure(self, job: Job, result: JobResult, now: datetime) -> None:
        job.fail(result)
        self._stats.failed += 1

        decision = plan_retry(job, now)
        if decision is not None:
            job.retry_count = decision.retry_count
            self._stats.retried += 1
            if job.pause_requested:
                self._pause_after_attempt(job, decision.due_at)
                return
            job.reschedule(decision.due_at)
            self._queue.push(job.id, decision.due_at, job.priority)
            logger.event(
                create_scheduler_event(
                    "job_retry",
                    level=LogLevel.WARN,
                    job_id=job.id,
                    job_name=job.name,
                    retry_count=decision.retry_count,
                    delay_seconds=decision.delay_seconds,
                    due_at=decision.due_at,
                    error=result.error,
                )
            )
            return

        logger.warning(f"Job {job.id} failed after {job.retry_count} retries: {result.error}")
        self._tracker.record_status(job.id, JobStatus.FAILED)
        self._next_occurrence(job, now, "retries exhausted", reset_retries=True)

    def _next_occurrence(
        self,
        job: Job,
        now: datetime,
        exhausted_reason: str,
        reset_retries: bool = False,
    ) -> None:
        """Queue the occurrence after the current one, or retire the job."""
        due = next_due(job.schedule, job.started_at, now)
        if due is None:
            self._retire(job, exhausted_reason)
            return

        if reset_retries:
            job.retry_count = 0
        if job.pause_requested:
            self._pause_after_attempt(job, due)
            return
        job.reschedule(due)
        self._queue.push(job.id, due, job.priority)

    def _pause_after_attempt(self, job: Job, due: datetime) -> None:
        """Apply a pause requested while the job was running."""
        self._paused_due[job.id] = due
        job.pause()
        logger.event(
            create_scheduler_event(
                "job_pause",
                job_id=job.id,
                job_name=job.name,
                status=job.status.value,
                due_at=due,
            )
        )

    def _release_dependents(self, job_id: str, now: datetime) -> None:
        """Pull dependents waiting on ``job_id`` forward to now."""
        for dependent_id in self._tracker.dependents_of(job_id):
            dependent = self._registry.get(dependent_id)
            entry = self._queue.get(dependent_id)
            if dependent is None or entry is None or dependent.deferrals == 0:
                continue
            if entry.due_at > now:
                self._queue.reschedule(dependent_id, now, dependent.priority)
                dependent.next_due_at = now

    def _retire(self, job: Job, reason: str) -> None:
        self._queue.remove(job.id)
        self._paused_due.pop(job.id, None)
        self._registry.retire(job.id)
        self._stats.retired += 1
        self._close_watchers(job.id)
        logger.event(
            create_scheduler_event(
                "job_retire",
                job_id=job.id,
                job_name=job.name,
                status=job.status.value,
                reason=reason,
                retry_count=job.retry_count,
            )
        )

    def _close_watchers(self, job_id: str) -> None:
        for queue in self._watchers.get(job_id, ()):
            queue.put_nowait(None)

    async def _notify(self, job: Job, result: JobResult) -> None:
        if job.on_result is None:
            return
        try:
            outcome = job.on_result(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"on_result callback of job {job.id} failed: {e}", exc_info=True)

    # Helpers

    def _is_known(self, job_id: str) -> bool:
        return self._registry.exists(job_id) or job_id in self._tracker

    def _require_known(self, job_id: str) -> Job:
        job = self._registry.find(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _require_active(self, job_id: str, target: JobStatus) -> Job:
        job = self._registry.get(job_id)
        if job is not None:
            return job
        retired = self._registry.find(job_id)
        if retired is None:
            raise JobNotFoundError(job_id)
        raise InvalidTransitionError(job_id, retired.status, target)
