# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Timing and ordering behaviour of a running scheduler on the real clock."""

import asyncio
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from src.core.execution.context import is_cancellation_requested
from src.core.models.job import JobStatus
from src.core.models.schedule import OneTimeSchedule, RecurringSchedule
from src.core.services.scheduler import SchedulerService
from tests.core.helpers import CallRecorder, wait_for


def _in(seconds: float) -> OneTimeSchedule:
    return OneTimeSchedule(at=datetime.now(timezone.utc) + timedelta(seconds=seconds))


class TestRunningScheduler:
    """End-to-end checks against the poll loop."""

    @pytest.mark.asyncio
    async def test_one_time_fires_once_not_early(self, scheduler: SchedulerService, recorder: CallRecorder) -> None:
        due = datetime.now(timezone.utc) + timedelta(seconds=0.1)
        job_id = await scheduler.submit_job("once", recorder, OneTimeSchedule(at=due))

        assert await wait_for(lambda: scheduler.get_job_status(job_id) == JobStatus.COMPLETED)
        await asyncio.sleep(0.1)
        assert recorder.count == 1
        assert recorder.calls[0] >= due

    @pytest.mark.asyncio
    async def test_recurring_keeps_firing(self, scheduler: SchedulerService, recorder: CallRecorder) -> None:
        """
        A 0.5s interval produces at least three runs within 1.6s.
        """
        job_id = await scheduler.submit_job(
            "tick", recorder, RecurringSchedule(interval=timedelta(seconds=0.5))
        )
        await asyncio.sleep(1.6)
        assert recorder.count >= 3
        assert scheduler.get_job_status(job_id) in (JobStatus.SCHEDULED, JobStatus.RUNNING, JobStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_bounded_retries_with_growing_gaps(self, scheduler: SchedulerService) -> None:
        failing = CallRecorder(fail_times=100)
        job_id = await scheduler.submit_job("flaky", failing, _in(0), max_retries=3)

        assert await wait_for(lambda: scheduler.get_job_status(job_id) == JobStatus.FAILED, timeout=5.0)
        await asyncio.sleep(0.2)

        assert failing.count == 4
        gaps = [(b - a).total_seconds() for a, b in zip(failing.calls, failing.calls[1:])]
        for gap, minimum in zip(gaps, (0.05, 0.1, 0.2)):
            assert gap >= minimum * 0.9

    @pytest.mark.asyncio
    async def test_no_overlapping_executions(self, scheduler: SchedulerService) -> None:
        """
        A job due again while still running is never started twice at once.
        """
        active = 0
        peak = 0
        runs = 0
        guard = threading.Lock()

        def slow() -> None:
            nonlocal active, peak, runs
            with guard:
                active += 1
                runs += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with guard:
                active -= 1

        await scheduler.submit_job("slow", slow, RecurringSchedule(interval=timedelta(seconds=0.01)))
        await asyncio.sleep(0.5)

        assert runs >= 2
        assert peak == 1

    @pytest.mark.asyncio
    async def test_dependency_order(self, scheduler: SchedulerService) -> None:
        order: list[str] = []

        def record(name: str) -> None:
            order.append(name)

        first = await scheduler.submit_job("extract", record, _in(0.2), args=("extract",))
        second = await scheduler.submit_job("load", record, _in(0), depends_on=[first], args=("load",))

        assert await wait_for(lambda: scheduler.get_job_status(second) == JobStatus.COMPLETED)
        assert order == ["extract", "load"]

    @pytest.mark.asyncio
    async def test_cancel_running_cooperative_task(self, scheduler: SchedulerService) -> None:
        """
        A thread-run task that checks the cancellation flag stops and the job ends CANCELLED.
        """
        stopped = threading.Event()

        def cooperative() -> None:
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                if is_cancellation_requested():
                    stopped.set()
                    return
                time.sleep(0.005)

        job_id = await scheduler.submit_job("coop", cooperative, _in(0))
        assert await wait_for(lambda: scheduler.get_job_status(job_id) == JobStatus.RUNNING)

        assert await scheduler.cancel_job(job_id)
        assert await wait_for(stopped.is_set, timeout=2.0)
        assert scheduler.get_job_status(job_id) == JobStatus.CANCELLED
        assert scheduler.get_execution_history(job_id) == []

    @pytest.mark.asyncio
    async def test_cancel_before_due_never_runs(self, scheduler: SchedulerService, recorder: CallRecorder) -> None:
        job_id = await scheduler.submit_job("later", recorder, _in(0.1))
        await scheduler.cancel_job(job_id)
        await asyncio.sleep(0.3)
        assert recorder.count == 0

    @pytest.mark.asyncio
    async def test_wait_until_idle(self, scheduler: SchedulerService) -> None:
        for i in range(3):
            await scheduler.submit_job(f"job-{i}", lambda: None, _in(0.05))
        assert await scheduler.wait_until_idle(timeout=3.0)
        stats = scheduler.get_statistics()
        assert stats.completed == 3
        assert stats.retired == 3
        assert stats.queue_size == 0
