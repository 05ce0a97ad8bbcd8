# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Shared fixtures for core module tests."""

from datetime import timedelta
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio

from src.core.execution.pool import ExecutorPool
from src.core.models.job import Job
from src.core.models.schedule import OneTimeSchedule, RecurringSchedule
from src.core.observability import ObservabilityContextManager
from src.core.services.scheduler import SchedulerService
from tests.core.helpers import BASE_TIME, CallRecorder, ManualClock


@pytest.fixture(autouse=True)
def reset_context() -> Generator[None, None, None]:
    yield
    ObservabilityContextManager.reset_instance()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def recorder() -> CallRecorder:
    return CallRecorder()


@pytest.fixture
def sample_job() -> Job:
    return Job(
        id="job-1",
        name="nightly-report",
        task=lambda: "ok",
        schedule=OneTimeSchedule(at=BASE_TIME),
        metadata={"source": "unit_test"},
    )


@pytest.fixture
def recurring_job() -> Job:
    return Job(
        id="job-2",
        name="heartbeat",
        task=lambda: None,
        schedule=RecurringSchedule(interval=timedelta(seconds=30), start=BASE_TIME),
    )


@pytest_asyncio.fixture
async def manual_scheduler(clock: ManualClock) -> AsyncGenerator[SchedulerService, None]:
    """Scheduler driven through run_pending() with a manual clock; the loop is never started."""
    service = SchedulerService(
        max_workers=2,
        poll_interval_seconds=0.05,
        retry_base_delay_seconds=1.0,
        dependency_poll_delay_seconds=0.1,
        shutdown_timeout_seconds=1.0,
        clock=clock,
    )
    yield service
    await service.stop()


@pytest_asyncio.fixture
async def scheduler() -> AsyncGenerator[SchedulerService, None]:
    """Running scheduler on the real clock with short timings."""
    service = SchedulerService(
        max_workers=4,
        poll_interval_seconds=0.02,
        retry_base_delay_seconds=0.05,
        dependency_poll_delay_seconds=0.02,
        dependency_poll_max_delay_seconds=0.1,
        shutdown_timeout_seconds=1.0,
    )
    await service.start()
    yield service
    await service.stop()


@pytest_asyncio.fixture
async def pool() -> AsyncGenerator[ExecutorPool, None]:
    executor_pool = ExecutorPool(max_workers=2)
    yield executor_pool
    await executor_pool.shutdown(timeout=1.0)
