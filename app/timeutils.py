from __future__ import annotations

import datetime
import re
from typing import Iterator, Tuple, Union

TIME_OF_DAY_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")
MINUTES_PER_DAY = 24 * 60

TimeLike = Union[str, datetime.time, datetime.datetime]


def as_local(value: datetime.datetime) -> datetime.datetime:
    """Return a naive datetime in local wall-clock time."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def week_bounds(value: datetime.date | datetime.datetime) -> Tuple[datetime.datetime, datetime.datetime]:
    """Return the Monday 00:00 and Sunday 23:59:59.999 enclosing ``value``."""
    if isinstance(value, datetime.datetime):
        value = as_local(value).date()
    monday = value - datetime.timedelta(days=value.weekday())
    week_start = datetime.datetime.combine(monday, datetime.time.min)
    week_end = datetime.datetime.combine(
        monday + datetime.timedelta(days=6), datetime.time(23, 59, 59, 999000)
    )
    return week_start, week_end


def day_bounds(value: datetime.date | datetime.datetime) -> Tuple[datetime.datetime, datetime.datetime]:
    if isinstance(value, datetime.datetime):
        value = as_local(value).date()
    return (
        datetime.datetime.combine(value, datetime.time.min),
        datetime.datetime.combine(value, datetime.time(23, 59, 59, 999000)),
    )


def hours(start: datetime.datetime, end: datetime.datetime) -> float:
    return (end - start).total_seconds() / 3600


def day_of_week(value: datetime.date | datetime.datetime) -> int:
    """0 = Sunday .. 6 = Saturday."""
    if isinstance(value, datetime.datetime):
        value = as_local(value)
    return (value.weekday() + 1) % 7


def parse_time_of_day(text: str) -> datetime.time:
    if not isinstance(text, str) or not TIME_OF_DAY_PATTERN.match(text.strip()):
        raise ValueError(f"Invalid time '{text}'. Use HH:mm (24-hour).")
    hour, minute = text.strip().split(":")
    return datetime.time(int(hour), int(minute))


def format_time_of_day(value: datetime.time | datetime.datetime) -> str:
    if isinstance(value, datetime.datetime):
        value = as_local(value).time()
    return f"{value.hour:02d}:{value.minute:02d}"


def time_of_day_minutes(value: TimeLike) -> int:
    if isinstance(value, str):
        value = parse_time_of_day(value)
    elif isinstance(value, datetime.datetime):
        value = as_local(value).time()
    return value.hour * 60 + value.minute


def combine(day: datetime.date, time_of_day: TimeLike) -> datetime.datetime:
    if isinstance(time_of_day, str):
        time_of_day = parse_time_of_day(time_of_day)
    elif isinstance(time_of_day, datetime.datetime):
        time_of_day = as_local(time_of_day).time()
    return datetime.datetime.combine(day, time_of_day.replace(second=0, microsecond=0))


def overlaps(
    candidate_start: datetime.datetime,
    candidate_end: datetime.datetime,
    existing_start: datetime.datetime,
    existing_end: datetime.datetime,
) -> bool:
    return (
        (candidate_start <= existing_start < candidate_end)
        or (candidate_start < existing_end <= candidate_end)
        or (existing_start <= candidate_start and existing_end >= candidate_end)
    )


def iter_days(start: datetime.date, end: datetime.date) -> Iterator[datetime.date]:
    """Yield every calendar day from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += datetime.timedelta(days=1)
