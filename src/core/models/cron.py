# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Five-field cron expressions restricted to literals and wildcards."""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from apscheduler.triggers.cron import CronTrigger

WILDCARD = "*"
MAX_LOOKAHEAD = timedelta(days=366)

_LITERAL = re.compile(r"^\d{1,2}$", re.ASCII)
_UNSUPPORTED = {
    "-": "ranges",
    ",": "lists",
    "/": "step values",
}

# APScheduler numbers weekdays from Monday, so weekdays are passed by name
_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

# (name, min, max) in expression order
_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 7),
)


def _parse_field(token: str, name: str, low: int, high: int) -> Optional[int]:
    if token == WILDCARD:
        return None
    for marker, feature in _UNSUPPORTED.items():
        if marker in token:
            raise ValueError(f"Cron {name} field '{token}': {feature} are not supported")
    if not _LITERAL.match(token):
        raise ValueError(f"Cron {name} field '{token}' must be a number or '*'")
    value = int(token)
    if not low <= value <= high:
        raise ValueError(f"Cron {name} field '{token}' out of range {low}-{high}")
    return value


def _token(value: Optional[int]) -> str:
    return WILDCARD if value is None else str(value)


@dataclass(frozen=True)
class CronExpression:
    """Parsed ``minute hour day month weekday`` expression.

    ``None`` marks a wildcard. Weekday 0 and 7 both mean Sunday. When both
    day and weekday are literals, a time must match both.
    """

    minute: Optional[int] = None
    hour: Optional[int] = None
    day: Optional[int] = None
    month: Optional[int] = None
    weekday: Optional[int] = None

    @classmethod
    def parse(cls, expression: str) -> "CronExpression":
        """Parse an expression string.

        :param expression: Five whitespace-separated fields
        :returns: CronExpression
        :raises ValueError: On any malformed or unsupported field
        """
        if not isinstance(expression, str):
            raise ValueError("Cron expression must be a string")
        tokens = expression.split()
        if len(tokens) != len(_FIELDS):
            raise ValueError(
                f"Cron expression '{expression}' must have 5 fields "
                f"(minute hour day month weekday), got {len(tokens)}"
            )
        values = {
            name: _parse_field(token, name, low, high)
            for token, (name, low, high) in zip(tokens, _FIELDS)
        }
        if values["weekday"] == 7:
            values["weekday"] = 0
        return cls(**values)

    def trigger(self, tz: str = "UTC", end_date: Optional[datetime] = None) -> CronTrigger:
        """Build the equivalent APScheduler trigger.

        Every field is passed explicitly; APScheduler fills omitted fields
        below the most significant one with their minimum instead of '*'.

        :param tz: IANA timezone name the fields are evaluated in
        :param end_date: Latest fire time the trigger may return
        :returns: CronTrigger
        """
        return CronTrigger(
            minute=_token(self.minute),
            hour=_token(self.hour),
            day=_token(self.day),
            month=_token(self.month),
            day_of_week=WILDCARD if self.weekday is None else _WEEKDAY_NAMES[self.weekday],
            timezone=tz,
            end_date=end_date,
        )

    def next_after(
        self,
        reference: datetime,
        lookahead: timedelta = MAX_LOOKAHEAD,
        tz: str = "UTC",
    ) -> Optional[datetime]:
        """First matching minute strictly after ``reference``.

        :param reference: Start time; naive values are wall-clock time in ``tz``
        :param lookahead: How far past ``reference`` a match may lie
        :param tz: IANA timezone name the fields are evaluated in
        :returns: Aware fire time, or None if nothing matches in range
        """
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=ZoneInfo(tz))
        reference = reference.astimezone(timezone.utc)
        start = reference.replace(second=0, microsecond=0) + timedelta(minutes=1)
        trigger = self.trigger(tz, end_date=reference + lookahead)
        return trigger.get_next_fire_time(None, start)

    def __str__(self) -> str:
        return " ".join(
            WILDCARD if value is None else str(value)
            for value in (self.minute, self.hour, self.day, self.month, self.weekday)
        )
