"""Pure helpers for time-of-day and datetime ranges.

All ranges are half-open: ``[start, end)``.
"""

import re
from datetime import date, datetime, time, timedelta

from medbook.scheduling.errors import ValidationError

MINUTES_PER_DAY = 24 * 60

_TIME_OF_DAY_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})$')


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    return a_start < b_end and b_start < a_end


def parse_time_of_day(value: str) -> int:
    """Parse ``"HH:MM"`` into minutes since midnight."""
    if not isinstance(value, str):
        raise ValidationError('Time of day must be a string in HH:MM format.')

    match = _TIME_OF_DAY_PATTERN.match(value.strip())
    if not match:
        raise ValidationError(f'Invalid time of day: {value!r}. Expected HH:MM.')

    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValidationError(f'Invalid time of day: {value!r}. Expected HH:MM.')

    return hours * 60 + minutes


def format_time_of_day(minutes: int) -> str:
    return f'{minutes // 60:02d}:{minutes % 60:02d}'


def validate_range(start, end) -> None:
    if start is None or end is None:
        raise ValidationError('Start and end time are required.')
    if not end > start:
        raise ValidationError('End time must be after start time.')


def minutes_of_day(value: datetime | time) -> int:
    return value.hour * 60 + value.minute


def day_of_week(day: date) -> int:
    """Weekday with Sunday as 0 and Saturday as 6."""
    return (day.weekday() + 1) % 7


def at_minutes(day: date, minutes: int) -> datetime:
    return datetime.combine(day, time.min) + timedelta(minutes=minutes)


def iterate_dates(first: date, last: date):
    current = first
    while current <= last:
        yield current
        current += timedelta(days=1)


def to_local_naive(value: datetime) -> datetime:
    """Naive local wall-clock time, minute precision.

    Timestamps with an offset are converted to server-local time first so
    they compare with ``datetime.now()`` and with stored naive columns.
    """
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(second=0, microsecond=0)
