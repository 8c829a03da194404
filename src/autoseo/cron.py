"""Five-field cron patterns (minute hour day-of-month month day-of-week).

Supports ``*``, numbers, comma lists, ``a-b`` ranges and ``/step`` on either
``*`` or a range. Day-of-week uses 0-6 with Sunday as 0 (7 is accepted as
Sunday too). When both day fields are restricted a day matches if either
does, as in classic cron.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .errors import ValidationFailed

_FIELD_BOUNDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 7),
)

# Bounds the backwards/forwards walk; enough for any pattern that fires at least every 4 years.
_MAX_STEPS = 200_000


@dataclass(frozen=True)
class CronPattern:
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    day_restricted: bool
    weekday_restricted: bool

    def matches_day(self, moment: datetime) -> bool:
        if moment.month not in self.months:
            return False
        cron_weekday = (moment.weekday() + 1) % 7
        day_ok = moment.day in self.days
        weekday_ok = cron_weekday in self.weekdays
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def matches(self, moment: datetime) -> bool:
        return (
            self.matches_day(moment)
            and moment.hour in self.hours
            and moment.minute in self.minutes
        )


def parse_cron(pattern: str) -> CronPattern:
    fields = pattern.split()
    if len(fields) != 5:
        raise ValidationFailed(f"cron pattern must have 5 fields: {pattern!r}")
    parsed = []
    for raw, (name, low, high) in zip(fields, _FIELD_BOUNDS):
        parsed.append(_parse_field(raw, name, low, high))
    weekdays = {0 if value == 7 else value for value in parsed[4]}
    return CronPattern(
        minutes=frozenset(parsed[0]),
        hours=frozenset(parsed[1]),
        days=frozenset(parsed[2]),
        months=frozenset(parsed[3]),
        weekdays=frozenset(weekdays),
        day_restricted=fields[2] != "*",
        weekday_restricted=fields[4] != "*",
    )


def _parse_field(raw: str, name: str, low: int, high: int) -> set[int]:
    values: set[int] = set()
    for part in raw.split(","):
        if not part:
            raise ValidationFailed(f"empty cron {name} entry in {raw!r}")
        step = 1
        if "/" in part:
            part, step_raw = part.split("/", 1)
            step = _parse_int(step_raw, name)
            if step < 1:
                raise ValidationFailed(f"cron {name} step must be positive")
        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_raw, end_raw = part.split("-", 1)
            start, end = _parse_int(start_raw, name), _parse_int(end_raw, name)
        else:
            start = _parse_int(part, name)
            end = high if step > 1 else start
        if start < low or end > high or start > end:
            raise ValidationFailed(f"cron {name} value out of range: {part!r}")
        values.update(range(start, end + 1, step))
    return values


def _parse_int(raw: str, name: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationFailed(f"invalid cron {name} value {raw!r}") from exc


def previous_fire(pattern: str | CronPattern, now: datetime) -> datetime | None:
    """Latest minute at or before ``now`` matching the pattern."""
    cron = parse_cron(pattern) if isinstance(pattern, str) else pattern
    moment = _floor_minute(now)
    for _ in range(_MAX_STEPS):
        if moment.month not in cron.months:
            moment = moment.replace(day=1, hour=0, minute=0) - timedelta(minutes=1)
        elif not cron.matches_day(moment):
            moment = moment.replace(hour=0, minute=0) - timedelta(minutes=1)
        elif moment.hour not in cron.hours:
            moment = moment.replace(minute=0) - timedelta(minutes=1)
        elif moment.minute not in cron.minutes:
            moment -= timedelta(minutes=1)
        else:
            return moment
    return None


def next_fire(pattern: str | CronPattern, after: datetime) -> datetime | None:
    """Earliest minute strictly after ``after`` matching the pattern."""
    cron = parse_cron(pattern) if isinstance(pattern, str) else pattern
    moment = _floor_minute(after) + timedelta(minutes=1)
    for _ in range(_MAX_STEPS):
        if moment.month not in cron.months:
            moment = _first_of_next_month(moment)
        elif not cron.matches_day(moment):
            moment = moment.replace(hour=0, minute=0) + timedelta(days=1)
        elif moment.hour not in cron.hours:
            moment = moment.replace(minute=0) + timedelta(hours=1)
        elif moment.minute not in cron.minutes:
            moment += timedelta(minutes=1)
        else:
            return moment
    return None


def _floor_minute(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(second=0, microsecond=0)


def _first_of_next_month(value: datetime) -> datetime:
    if value.month == 12:
        return value.replace(year=value.year + 1, month=1, day=1, hour=0, minute=0)
    return value.replace(month=value.month + 1, day=1, hour=0, minute=0)
