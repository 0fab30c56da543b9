"""
Cron schedule matching and the fluent interval helpers shared by jobs.

Matching is delegated to croniter; this module only adds the year filter,
timezone normalisation and the expression builders.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date as date_type
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from croniter import croniter

from warden.errors import ConfigError

UTC = timezone.utc
DEFAULT_EXPRESSION = "* * * * *"
MAX_PREVIEW_ITERATIONS = 10000

CRON_RANGES = {
    "minute": (0, 59),
    "hour": (0, 23),
    "day": (1, 31),
    "month": (1, 12),
    "weekday": (0, 6),
}


@dataclass(frozen=True)
class Schedule:
    expression: str = DEFAULT_EXPRESSION
    year: Optional[str] = None


def validate_expression(expression: Any) -> str:
    if not isinstance(expression, str) or not expression.strip():
        raise ConfigError("Error: cron expression must be a non-empty string.")
    expression = " ".join(expression.split())
    if not croniter.is_valid(expression):
        raise ConfigError(f'Error: Invalid cron expression "{expression}".')
    return expression


def to_local(value: datetime, tz: ZoneInfo) -> datetime:
    # naive timestamps are taken as already expressed in the scheduler zone
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def is_due(schedule: Schedule, at: datetime, tz: ZoneInfo) -> bool:
    local = to_local(at, tz).replace(second=0, microsecond=0)
    if schedule.year is not None and schedule.year != local.strftime("%Y"):
        return False
    return bool(croniter.match(schedule.expression, local))


def next_run_times(schedule: Schedule, count: int, after: datetime, tz: ZoneInfo) -> List[datetime]:
    local_after = to_local(after, tz)
    iterator = croniter(schedule.expression, local_after)
    runs: List[datetime] = []
    for _ in range(MAX_PREVIEW_ITERATIONS):
        if len(runs) >= count:
            break
        nxt = iterator.get_next(datetime)
        if nxt.tzinfo is None:
            nxt = nxt.replace(tzinfo=tz)
        if schedule.year is not None:
            if nxt.year > int(schedule.year):
                break
            if str(nxt.year) != schedule.year:
                continue
        runs.append(nxt)
    return runs


def _cron_value(value: Any, field_name: str, minimum: Optional[int] = None) -> str:
    low, high = CRON_RANGES[field_name]
    if minimum is not None:
        low = minimum
    if value is None or value == "*":
        return "*"
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise ConfigError(
            f"Error: Invalid {field_name} value {value!r}: it should be '*' or between {low} and {high}."
        )
    return str(value)


def _split_time(hour: Any, minute: Any) -> Tuple[Any, Any]:
    if isinstance(hour, str) and ":" in hour:
        hour_part, minute_part = hour.split(":", 1)
        return hour_part, minute_part or 0
    return hour, minute


class IntervalMixin:
    """Fluent schedule builders. Hosts must define ``schedule`` as a Schedule."""

    schedule: Schedule

    def at(self, expression: str) -> Any:
        self.schedule = Schedule(validate_expression(expression), self.schedule.year)
        return self

    def date(self, when: Union[str, datetime, date_type]) -> Any:
        """Run once at a given date (and time, if one is given)."""
        if isinstance(when, str):
            try:
                when = datetime.fromisoformat(when)
            except ValueError as exc:
                raise ConfigError(f'Error: date must be ISO formatted, got "{when}".') from exc
        if not isinstance(when, datetime):
            when = datetime(when.year, when.month, when.day)
        self.schedule = Schedule(self.schedule.expression, when.strftime("%Y"))
        return self.at(f"{when.minute} {when.hour} {when.day} {when.month} *")

    def every_minute(self, minute: Any = None) -> Any:
        step = _cron_value(minute, "minute", minimum=1)
        return self.at("* * * * *" if step == "*" else f"*/{step} * * * *")

    def hourly(self, minute: Any = 0) -> Any:
        return self.at(f"{_cron_value(minute, 'minute')} * * * *")

    def daily(self, hour: Any = 0, minute: Any = 0) -> Any:
        hour, minute = _split_time(hour, minute)
        return self.at(f"{_cron_value(minute, 'minute')} {_cron_value(hour, 'hour')} * * *")

    def weekly(self, weekday: Any = 0, hour: Any = 0, minute: Any = 0) -> Any:
        hour, minute = _split_time(hour, minute)
        return self.at(
            f"{_cron_value(minute, 'minute')} {_cron_value(hour, 'hour')} * * {_cron_value(weekday, 'weekday')}"
        )

    def monthly(self, month: Any = None, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        hour, minute = _split_time(hour, minute)
        return self.at(
            f"{_cron_value(minute, 'minute')} {_cron_value(hour, 'hour')} "
            f"{_cron_value(day, 'day')} {_cron_value(month, 'month')} *"
        )

    def sunday(self, hour: Any = 0, minute: Any = 0) -> Any:
        return self.weekly(0, hour, minute)

    def monday(self, hour: Any = 0, minute: Any = 0) -> Any:
        return self.weekly(1, hour, minute)

    def tuesday(self, hour: Any = 0, minute: Any = 0) -> Any:
        return self.weekly(2, hour, minute)

    def wednesday(self, hour: Any = 0, minute: Any = 0) -> Any:
        return self.weekly(3, hour, minute)

    def thursday(self, hour: Any = 0, minute: Any = 0) -> Any:
        return self.weekly(4, hour, minute)

    def friday(self, hour: Any = 0, minute: Any = 0) -> Any:
        return self.weekly(5, hour, minute)

    def saturday(self, hour: Any = 0, minute: Any = 0) -> Any:
        return self.weekly(6, hour, minute)

    def january(self, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        return self.monthly(1, day, hour, minute)

    def february(self, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        return self.monthly(2, day, hour, minute)

    def march(self, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        return self.monthly(3, day, hour, minute)

    def april(self, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        return self.monthly(4, day, hour, minute)

    def may(self, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        return self.monthly(5, day, hour, minute)

    def june(self, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        return self.monthly(6, day, hour, minute)

    def july(self, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        return self.monthly(7, day, hour, minute)

    def august(self, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        return self.monthly(8, day, hour, minute)

    def september(self, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        return self.monthly(9, day, hour, minute)

    def october(self, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        return self.monthly(10, day, hour, minute)

    def november(self, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        return self.monthly(11, day, hour, minute)

    def december(self, day: Any = 1, hour: Any = 0, minute: Any = 0) -> Any:
        return self.monthly(12, day, hour, minute)
