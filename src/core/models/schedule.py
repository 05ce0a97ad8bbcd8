# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Schedule policies and next-due-time computation."""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from src.core.exceptions import ScheduleValidationError
from src.core.models.cron import MAX_LOOKAHEAD, CronExpression


def _utcnow() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class OneTimeSchedule(BaseModel):
    """Fires once at ``at``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["one_time"] = "one_time"
    at: datetime

    @field_validator("at")
    @classmethod
    def _normalize_at(cls, value: datetime) -> datetime:
        return as_utc(value)


class RecurringSchedule(BaseModel):
    """Fires every ``interval`` from ``start`` (or submission) until ``end``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["recurring"] = "recurring"
    interval: timedelta
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("interval")
    @classmethod
    def _positive_interval(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("interval must be positive")
        return value

    @field_validator("start", "end")
    @classmethod
    def _normalize_bounds(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @model_validator(mode="after")
    def _start_before_end(self) -> "RecurringSchedule":
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError(f"start ({self.start.isoformat()}) is after end ({self.end.isoformat()})")
        return self


class CronSchedule(BaseModel):
    """Fires on minutes matching a literal/wildcard cron expression."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["cron"] = "cron"
    expression: str
    timezone: str = "UTC"

    @field_validator("expression")
    @classmethod
    def _valid_expression(cls, value: str) -> str:
        CronExpression.parse(value)
        return " ".join(value.split())

    @field_validator("timezone")
    @classmethod
    def _valid_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return value

    @property
    def cron(self) -> CronExpression:
        return CronExpression.parse(self.expression)


Schedule = Annotated[
    Union[OneTimeSchedule, RecurringSchedule, CronSchedule],
    Field(discriminator="kind"),
]

_SCHEDULE_ADAPTER: TypeAdapter = TypeAdapter(Schedule)


def parse_schedule(value: Any) -> Union[OneTimeSchedule, RecurringSchedule, CronSchedule]:
    """Accept a schedule model or its dict form.

    :param value: Schedule instance or mapping with a ``kind`` key
    :returns: Validated schedule
    :raises ScheduleValidationError: If the schedule is invalid
    """
    if isinstance(value, (OneTimeSchedule, RecurringSchedule, CronSchedule)):
        return value
    try:
        return _SCHEDULE_ADAPTER.validate_python(value)
    except ValidationError as exc:
        messages = "; ".join(err["msg"] for err in exc.errors())
        raise ScheduleValidationError(f"Invalid schedule: {messages}", schedule=value) from exc


def _next_cron_time(schedule: CronSchedule, reference: datetime) -> Optional[datetime]:
    due = schedule.cron.next_after(reference, lookahead=MAX_LOOKAHEAD, tz=schedule.timezone)
    return None if due is None else due.astimezone(timezone.utc)


def next_due(
    schedule: Union[OneTimeSchedule, RecurringSchedule, CronSchedule],
    last_execution: Optional[datetime],
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Compute when a schedule is next due.

    :param schedule: Schedule policy
    :param last_execution: Start time of the previous execution, None before the first
    :param now: Reference time for first occurrences, defaults to UTC now
    :returns: Next due time, or None when the schedule is exhausted
    """
    now = as_utc(now) or _utcnow()
    last_execution = as_utc(last_execution)

    match schedule:
        case OneTimeSchedule(at=at):
            return at if last_execution is None else None
        case RecurringSchedule(interval=interval, start=start, end=end):
            if last_execution is None:
                candidate = start if start is not None else now
            else:
                candidate = last_execution + interval
            if end is not None and candidate > end:
                return None
            return candidate
        case CronSchedule():
            return _next_cron_time(schedule, last_execution or now)
    raise TypeError(f"Unsupported schedule type: {type(schedule).__name__}")


def resume_due(
    schedule: Union[OneTimeSchedule, RecurringSchedule, CronSchedule],
    pending_due: Optional[datetime],
    now: datetime,
) -> Optional[datetime]:
    """Recompute the pending occurrence of a paused job from ``now``.

    :param schedule: Schedule policy
    :param pending_due: Due time the occurrence had when it was paused
    :param now: Current time
    :returns: New due time, or None if the schedule ran out while paused
    """
    match schedule:
        case CronSchedule():
            return next_due(schedule, None, now)
        case RecurringSchedule(end=end):
            candidate = max(pending_due or now, now)
            if end is not None and candidate > end:
                return None
            return candidate
        case OneTimeSchedule(at=at):
            return max(pending_due or at, now)
    raise TypeError(f"Unsupported schedule type: {type(schedule).__name__}")


def validate_schedule(
    schedule: Union[OneTimeSchedule, RecurringSchedule, CronSchedule],
    now: datetime,
) -> datetime:
    """Check a schedule can fire at all and return its first due time.

    :raises ScheduleValidationError: If the schedule never becomes due
    """
    first = next_due(schedule, None, now)
    if first is None:
        if isinstance(schedule, CronSchedule):
            raise ScheduleValidationError(
                f"Cron expression '{schedule.expression}' never matches within one year",
                schedule=schedule,
            )
        raise ScheduleValidationError("Schedule is already exhausted", schedule=schedule)
    return first
