# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Retry planning for failed executions."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from src.core.models.job import Job, JobStatus


@dataclass(frozen=True)
class RetryDecision:
    """Where a failed job goes next within the current occurrence."""

    due_at: datetime
    delay_seconds: float
    retry_count: int


def plan_retry(job: Job, now: datetime) -> Optional[RetryDecision]:
    """Decide whether a FAILED job is retried and when.

    The delay uses the retry count before it is incremented, so an
    exponential policy with base 1s waits 1s, 2s, 4s, ...

    :param job: Job whose latest attempt failed
    :param now: Time the failure was processed
    :returns: RetryDecision, or None once retries are exhausted
    """
    if job.status != JobStatus.FAILED:
        raise ValueError(f"Job {job.id} is {job.status.value}, only failed jobs are retried")
    if not job.can_retry:
        return None
    delay = job.retry_policy.delay_for(job.retry_count)
    return RetryDecision(
        due_at=now + timedelta(seconds=delay),
        delay_seconds=delay,
        retry_count=job.retry_count + 1,
    )
