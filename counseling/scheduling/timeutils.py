import re
from datetime import date, datetime, time, timedelta

from counseling.core import errors

TIME_PATTERN = re.compile(r'^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$')


def parse_hhmm(value: str) -> time:
    """Parse a 24-hour ``H:MM``/``HH:MM`` string."""
    match = TIME_PATTERN.match((value or '').strip())
    if not match:
        raise errors.ValidationError(f"Invalid time '{value}'. Use 24-hour HH:MM.")
    return time(int(match.group(1)), int(match.group(2)))


def format_hhmm(value: time) -> str:
    return f'{value.hour:02d}:{value.minute:02d}'


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def day_of_week(value: date) -> int:
    """Weekday counted from Sunday = 0, as availability windows store it."""
    return (value.weekday() + 1) % 7


def intervals_overlap(start_a, end_a, start_b, end_b) -> bool:
    return start_a < end_b and start_b < end_a


def day_bounds(value: date) -> tuple[datetime, datetime]:
    start = datetime.combine(value, time(0, 0))
    return start, start + timedelta(days=1)
