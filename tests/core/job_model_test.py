# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Tests for Job model."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from src.core.exceptions import InvalidTransitionError
from src.core.models.job import (
    Job,
    JobResult,
    JobStatus,
    Priority,
    can_transition,
)
from src.core.models.schedule import OneTimeSchedule
from tests.core.helpers import BASE_TIME


def _result(job: Job, status: JobStatus, error: str = None) -> JobResult:
    return JobResult(job_id=job.id, status=status, timestamp=BASE_TIME, error=error, duration_seconds=0.5)


class TestJobModel:
    """Unit tests for the Job model state machine and history."""

    def test_defaults(self) -> None:
        """
        Verify a new job has correct default values.
        """
        job = Job(name="report", task=print, schedule=OneTimeSchedule(at=BASE_TIME))
        assert job.status == JobStatus.SCHEDULED
        assert job.id
        assert job.priority == Priority.MEDIUM
        assert job.max_retries == 3
        assert job.retry_count == 0
        assert job.history == []
        assert job.depends_on == set()
        assert not job.is_terminal

    def test_unique_ids(self) -> None:
        schedule = OneTimeSchedule(at=BASE_TIME)
        assert Job(name="a", task=print, schedule=schedule).id != Job(name="b", task=print, schedule=schedule).id

    def test_negative_max_retries_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Job(name="a", task=print, schedule=OneTimeSchedule(at=BASE_TIME), max_retries=-1)

    def test_schedule_from_dict(self) -> None:
        job = Job(name="a", task=print, schedule={"kind": "recurring", "interval": 60})
        assert job.schedule.interval == timedelta(seconds=60)

    def test_start(self, sample_job: Job) -> None:
        """
        Verify start() transitions job to RUNNING.
        """
        sample_job.next_due_at = BASE_TIME
        sample_job.deferrals = 2
        sample_job.start(BASE_TIME)
        assert sample_job.status == JobStatus.RUNNING
        assert sample_job.started_at == BASE_TIME
        assert sample_job.next_due_at is None
        assert sample_job.deferrals == 0
        assert sample_job.run_count == 1

    def test_complete_resets_retry_count(self, sample_job: Job) -> None:
        """
        Verify complete() records history and restarts the retry budget.
        """
        sample_job.retry_count = 2
        sample_job.start(BASE_TIME)
        result = _result(sample_job, JobStatus.COMPLETED)
        sample_job.complete(result)
        assert sample_job.status == JobStatus.COMPLETED
        assert sample_job.retry_count == 0
        assert sample_job.history == [result]
        assert sample_job.last_result is result
        assert sample_job.is_terminal

    def test_fail(self, sample_job: Job) -> None:
        """
        Verify fail() transitions job to FAILED with error message.
        """
        sample_job.start(BASE_TIME)
        sample_job.fail(_result(sample_job, JobStatus.FAILED, "RuntimeError: boom"))
        assert sample_job.status == JobStatus.FAILED
        assert sample_job.error == "RuntimeError: boom"
        assert len(sample_job.history) == 1

    def test_reschedule_after_failure(self, sample_job: Job) -> None:
        sample_job.start(BASE_TIME)
        sample_job.fail(_result(sample_job, JobStatus.FAILED, "x"))
        sample_job.reschedule(BASE_TIME + timedelta(seconds=1))
        assert sample_job.status == JobStatus.SCHEDULED
        assert sample_job.next_due_at == BASE_TIME + timedelta(seconds=1)

    def test_pause_and_resume(self, sample_job: Job) -> None:
        sample_job.pause_requested = True
        sample_job.pause()
        assert sample_job.status == JobStatus.PAUSED
        assert not sample_job.pause_requested
        sample_job.resume(BASE_TIME)
        assert sample_job.status == JobStatus.SCHEDULED
        assert sample_job.next_due_at == BASE_TIME

    def test_cancel_scheduled(self, sample_job: Job) -> None:
        """
        Verify cancel() works on scheduled jobs with reason.
        """
        sample_job.cancel("user request")
        assert sample_job.status == JobStatus.CANCELLED
        assert sample_job.error == "user request"
        assert sample_job.is_terminal

    def test_cancel_running(self, sample_job: Job) -> None:
        sample_job.start(BASE_TIME)
        sample_job.cancel()
        assert sample_job.status == JobStatus.CANCELLED

    def test_cancelled_is_final(self, sample_job: Job) -> None:
        sample_job.cancel()
        with pytest.raises(InvalidTransitionError, match="from cancelled to scheduled"):
            sample_job.resume(BASE_TIME)

    def test_cannot_complete_scheduled(self, sample_job: Job) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            sample_job.complete(_result(sample_job, JobStatus.COMPLETED))
        assert exc_info.value.current == JobStatus.SCHEDULED
        assert exc_info.value.target == JobStatus.COMPLETED

    def test_cannot_pause_running(self, sample_job: Job) -> None:
        sample_job.start(BASE_TIME)
        with pytest.raises(InvalidTransitionError):
            sample_job.pause()

    @pytest.mark.parametrize(
        "status,terminal",
        [
            (JobStatus.SCHEDULED, False),
            (JobStatus.RUNNING, False),
            (JobStatus.PAUSED, False),
            (JobStatus.COMPLETED, True),
            (JobStatus.FAILED, True),
            (JobStatus.CANCELLED, True),
        ],
    )
    def test_is_terminal(self, status: JobStatus, terminal: bool) -> None:
        """
        Verify is_terminal property for each status.
        """
        job = Job(name="a", task=print, schedule=OneTimeSchedule(at=BASE_TIME), status=status)
        assert job.is_terminal == terminal

    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            (JobStatus.SCHEDULED, JobStatus.RUNNING, True),
            (JobStatus.RUNNING, JobStatus.SCHEDULED, False),
            (JobStatus.FAILED, JobStatus.SCHEDULED, True),
            (JobStatus.PAUSED, JobStatus.RUNNING, False),
            (JobStatus.CANCELLED, JobStatus.SCHEDULED, False),
        ],
    )
    def test_can_transition(self, current: JobStatus, target: JobStatus, allowed: bool) -> None:
        assert can_transition(current, target) is allowed

    def test_can_retry(self, sample_job: Job) -> None:
        sample_job.retry_count = 3
        assert not sample_job.can_retry
        sample_job.retry_count = 2
        assert sample_job.can_retry

    def test_priority_ordering(self) -> None:
        assert Priority.LOW < Priority.MEDIUM < Priority.HIGH < Priority.CRITICAL


class TestJobInfo:
    """Tests for the read-only job snapshot."""

    def test_info_snapshot(self, sample_job: Job) -> None:
        sample_job.depends_on = {"b", "a"}
        sample_job.start(BASE_TIME)
        sample_job.complete(_result(sample_job, JobStatus.COMPLETED))
        info = sample_job.info()
        assert info.id == sample_job.id
        assert info.status == JobStatus.COMPLETED
        assert info.depends_on == ["a", "b"]
        assert info.duration_seconds == 0.5
        assert info.metadata == {"source": "unit_test"}

    def test_info_excludes_task(self, sample_job: Job) -> None:
        dumped = sample_job.model_dump()
        assert "task" not in dumped
        assert "on_result" not in dumped

    def test_duration_none_before_first_run(self, sample_job: Job) -> None:
        assert sample_job.info().duration_seconds is None
