"""Calendar-month arithmetic shared by the splitter and the materializer."""

from calendar import monthrange
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, TypeVar


DateLike = TypeVar("DateLike", date, datetime)


def add_months(value: DateLike, months: int, anchor_day: Optional[int] = None) -> DateLike:
    """
    Move a date (or datetime) by whole calendar months.

    The day is anchor_day (default: the value's own day) clamped to the
    last day of the target month, so Jan 31 + 1 month is Feb 28/29 and,
    with anchor_day=31, Feb 29 + 1 month is Mar 31 again.
    """
    total_month = value.month - 1 + months
    year = value.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    day = min(anchor_day or value.day, last_day)
    return value.replace(year=year, month=month, day=day)


def first_day_of_month(value: date) -> date:
    return date(value.year, value.month, 1)


def materialization_cutoff(today: date, include_current_period: bool = False) -> date:
    """
    Latest cursor date whose period counts as elapsed on `today`.

    By default a month's period is due once that month is over, evaluated
    at the first of the current month. With include_current_period the
    period is due as soon as its date is reached.
    """
    if include_current_period:
        return today
    return first_day_of_month(today) - timedelta(days=1)


def start_of_day(value: date) -> datetime:
    """Midnight UTC of a calendar date."""
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def as_instant(value: date) -> datetime:
    """Normalize a date or datetime to an aware UTC datetime."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return start_of_day(value)
