# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Job models and lifecycle state machine."""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Callable, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.core.exceptions import InvalidTransitionError
from src.core.models.retry import RetryPolicy
from src.core.models.schedule import Schedule


def _utcnow() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class Priority(IntEnum):
    """Dispatch priority; higher values run first on equal due times."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class JobStatus(str, Enum):
    """Status of a scheduled job."""

    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.SCHEDULED: frozenset({JobStatus.RUNNING, JobStatus.PAUSED, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset({JobStatus.SCHEDULED, JobStatus.PAUSED}),
    JobStatus.FAILED: frozenset({JobStatus.SCHEDULED, JobStatus.PAUSED}),
    JobStatus.PAUSED: frozenset({JobStatus.SCHEDULED, JobStatus.CANCELLED}),
    JobStatus.CANCELLED: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Check whether the lifecycle allows ``current`` -> ``target``."""
    return target in _TRANSITIONS[current]


class JobResult(BaseModel):
    """Outcome of a single execution attempt."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    status: JobStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    error: Optional[str] = None
    duration_seconds: float = 0.0
    attempt: int = 0
    scheduled_for: Optional[datetime] = None
    output: Any = None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED


class Job(BaseModel):
    """A unit of work with a schedule, priority and retry policy.

    Mutated only by the scheduler core while it holds its lock.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    task: Callable[..., Any] = Field(exclude=True)
    task_args: tuple = ()
    task_kwargs: dict[str, Any] = Field(default_factory=dict)
    schedule: Schedule
    priority: Priority = Priority.MEDIUM
    status: JobStatus = JobStatus.SCHEDULED
    retry_count: int = 0
    max_retries: int = Field(default=3, ge=0)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    depends_on: set[str] = Field(default_factory=set)
    history: list[JobResult] = Field(default_factory=list)
    next_due_at: Optional[datetime] = None
    run_count: int = 0
    deferrals: int = 0
    pause_requested: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    on_result: Optional[Callable[..., Any]] = Field(default=None, exclude=True)

    def _transition(self, target: JobStatus) -> None:
        if not can_transition(self.status, target):
            raise InvalidTransitionError(self.id, self.status, target)
        self.status = target

    def start(self, now: Optional[datetime] = None) -> None:
        """Mark the job as RUNNING for one execution attempt."""
        self._transition(JobStatus.RUNNING)
        self.started_at = now or _utcnow()
        self.next_due_at = None
        self.deferrals = 0
        self.run_count += 1

    def complete(self, result: JobResult) -> None:
        """Record a successful attempt; the retry budget starts over."""
        self._transition(JobStatus.COMPLETED)
        self.history.append(result)
        self.completed_at = result.timestamp
        self.retry_count = 0
        self.error = None

    def fail(self, result: JobResult) -> None:
        """Record a failed attempt."""
        self._transition(JobStatus.FAILED)
        self.history.append(result)
        self.completed_at = result.timestamp
        self.error = result.error

    def reschedule(self, due_at: datetime) -> None:
        """Move back to SCHEDULED with a new due time (retry or next occurrence)."""
        self._transition(JobStatus.SCHEDULED)
        self.next_due_at = due_at

    def pause(self) -> None:
        self._transition(JobStatus.PAUSED)
        self.next_due_at = None
        self.pause_requested = False

    def resume(self, due_at: datetime) -> None:
        self._transition(JobStatus.SCHEDULED)
        self.next_due_at = due_at

    def cancel(self, reason: str = "Cancelled by user") -> None:
        self._transition(JobStatus.CANCELLED)
        self.next_due_at = None
        self.completed_at = _utcnow()
        self.error = reason

    @property
    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return self.status in TERMINAL_STATUSES

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    @property
    def last_result(self) -> Optional[JobResult]:
        return self.history[-1] if self.history else None

    def info(self) -> "JobInfo":
        """Snapshot for callers outside the scheduler."""
        return JobInfo(
            id=self.id,
            name=self.name,
            schedule=self.schedule,
            priority=self.priority,
            status=self.status,
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            depends_on=sorted(self.depends_on),
            next_due_at=self.next_due_at,
            run_count=self.run_count,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            error=self.error,
            last_result=self.last_result,
            metadata=dict(self.metadata),
        )


class JobInfo(BaseModel):
    """Read-only view of a job."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    schedule: Schedule
    priority: Priority
    status: JobStatus
    retry_count: int
    max_retries: int
    depends_on: list[str]
    next_due_at: Optional[datetime] = None
    run_count: int = 0
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    last_result: Optional[JobResult] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def duration_seconds(self) -> Optional[float]:
        return self.last_result.duration_seconds if self.last_result else None


class SchedulerStats(BaseModel):
    """Counters and gauges of a scheduler instance."""

    submitted: int = 0
    executions: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0
    cancelled: int = 0
    retired: int = 0
    jobs_by_status: dict[str, int] = Field(default_factory=dict)
    queue_size: int = 0
    running: int = 0
    max_workers: int = 0


ResultCallback = Callable[[JobResult], Any]
