# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Tests for JobRegistry."""

import pytest

from src.core.models.job import Job, JobStatus
from src.core.models.schedule import OneTimeSchedule
from src.core.storage.job_registry import JobRegistry
from tests.core.helpers import BASE_TIME


def _job(job_id: str) -> Job:
    return Job(id=job_id, name=job_id, task=print, schedule=OneTimeSchedule(at=BASE_TIME))


class TestJobRegistry:
    """Unit tests for active and retired job bookkeeping."""

    def test_create_and_get(self, sample_job: Job) -> None:
        registry = JobRegistry()
        registry.create(sample_job)
        assert registry.get(sample_job.id) is sample_job
        assert registry.exists(sample_job.id)
        assert registry.is_active(sample_job.id)
        assert len(registry) == 1

    def test_duplicate_rejected(self, sample_job: Job) -> None:
        registry = JobRegistry()
        registry.create(sample_job)
        with pytest.raises(ValueError, match="already exists"):
            registry.create(sample_job)

    def test_get_nonexistent(self) -> None:
        registry = JobRegistry()
        assert registry.get("missing") is None
        assert registry.find("missing") is None
        assert registry.retire("missing") is None

    def test_retire_keeps_job_queryable(self, sample_job: Job) -> None:
        """
        Retired jobs leave the active set but can still be found.
        """
        registry = JobRegistry()
        registry.create(sample_job)
        registry.retire(sample_job.id)
        assert registry.get(sample_job.id) is None
        assert registry.find(sample_job.id) is sample_job
        assert not registry.is_active(sample_job.id)
        assert registry.get_retired() == [sample_job]
        assert len(registry) == 0

    def test_retired_archive_bounded(self) -> None:
        """
        The oldest retired jobs are evicted first.
        """
        registry = JobRegistry(retired_limit=2)
        for job_id in ("a", "b", "c"):
            registry.create(_job(job_id))
            registry.retire(job_id)
        assert registry.find("a") is None
        assert [job.id for job in registry.get_retired()] == ["b", "c"]

    def test_eviction_reported(self) -> None:
        evicted: list[str] = []
        registry = JobRegistry(retired_limit=1, on_evict=evicted.append)
        for job_id in ("a", "b", "c"):
            registry.create(_job(job_id))
            registry.retire(job_id)
        assert evicted == ["a", "b"]

    def test_list_filters_by_status(self) -> None:
        registry = JobRegistry()
        running = _job("a")
        running.start(BASE_TIME)
        registry.create(running)
        registry.create(_job("b"))
        cancelled = registry.create(_job("c"))
        cancelled.cancel()
        registry.retire("c")

        assert [job.id for job in registry.list()] == ["a", "b", "c"]
        assert [job.id for job in registry.list(JobStatus.RUNNING)] == ["a"]
        assert [job.id for job in registry.list(JobStatus.CANCELLED)] == ["c"]
        assert [job.id for job in registry] == ["a", "b"]
