"""Calendar arithmetic used by the recurrence engine.

All helpers keep whatever tzinfo the inputs carry; the engine never converts
between zones.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo

from dateutil.relativedelta import relativedelta


def as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def start_of_day(value: date | datetime, tz: tzinfo | None = None) -> datetime:
    """Midnight of *value*'s calendar day.

    A datetime keeps its own tzinfo; a bare date takes *tz*.
    """
    if isinstance(value, datetime):
        return value.replace(hour=0, minute=0, second=0, microsecond=0)
    return datetime.combine(value, time.min, tzinfo=tz)


def end_of_day(value: date | datetime, tz: tzinfo | None = None) -> datetime:
    if isinstance(value, datetime):
        return value.replace(hour=23, minute=59, second=59, microsecond=999999)
    return datetime.combine(value, time.max, tzinfo=tz)


def add_days(value: datetime, days: int) -> datetime:
    return value + timedelta(days=days)


def add_weeks(value: datetime, weeks: int) -> datetime:
    return value + timedelta(weeks=weeks)


def add_months(value: datetime, months: int, day: int | None = None) -> datetime:
    """Shift by whole months, clamping to the last day of shorter months.

    With *day* set, the result lands on that day-of-month (again clamped)
    rather than on *value*'s own day.
    """
    return value + relativedelta(months=months, day=day)


def is_same_day(a: date | datetime, b: date | datetime) -> bool:
    return as_date(a) == as_date(b)


def days_between(earlier: date | datetime, later: date | datetime) -> int:
    """Whole calendar days from *earlier* to *later* (negative if reversed)."""
    return (as_date(later) - as_date(earlier)).days


def months_between(earlier: date | datetime, later: date | datetime) -> int:
    a, b = as_date(earlier), as_date(later)
    return (b.year - a.year) * 12 + (b.month - a.month)


def last_day_of_month(value: date | datetime) -> int:
    return (as_date(value) + relativedelta(day=31)).day
