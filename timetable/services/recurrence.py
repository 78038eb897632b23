"""Service for deciding when recurring events occur and expanding them into
concrete instances for a query window."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, tzinfo
from itertools import islice
from typing import Iterator

from dateutil.relativedelta import relativedelta

from timetable.config import get_settings
from timetable.domain.models import (
    CustomPattern,
    DailyPattern,
    Event,
    MonthlyPattern,
    OccurrenceExpansion,
    RecurrencePattern,
    WeeklyPattern,
)
from timetable.services.dates import (
    add_days,
    add_months,
    add_weeks,
    as_date,
    days_between,
    end_of_day,
    is_same_day,
    last_day_of_month,
    months_between,
    start_of_day,
)

logger = logging.getLogger(__name__)

RECURRENCE_PRESETS: dict[str, RecurrencePattern] = {
    "daily": DailyPattern(interval=1),
    "weekly": WeeklyPattern(interval=1),
    "monthly": MonthlyPattern(interval=1),
    "every_two_days": DailyPattern(interval=2),
    "every_weekday": CustomPattern(interval=1, days_of_week=[1, 2, 3, 4, 5]),
    "every_weekend": CustomPattern(interval=1, days_of_week=[0, 6]),
}


def _warn_unrecognized(base: Event) -> None:
    logger.warning(
        "Event %s has unrecognized recurrence type %r; no occurrences produced",
        base.id,
        base.recurrence_pattern.type,
    )


def _window_start(value: date | datetime, tz: tzinfo | None) -> datetime:
    if isinstance(value, datetime):
        return value
    return start_of_day(value, tz)


def _window_end(value: date | datetime, tz: tzinfo | None) -> datetime:
    if isinstance(value, datetime):
        return value
    return end_of_day(value, tz)


# ---------------------------------------------------------------------------
# Membership and stepping
# ---------------------------------------------------------------------------


def should_event_occur_on_date(base: Event, target_date: date | datetime) -> bool:
    """Return whether *base* has an occurrence on *target_date*'s calendar day."""
    if not base.recurs:
        return is_same_day(base.start_time, target_date)

    pattern = base.recurrence_pattern
    base_day = as_date(base.start_time)
    check_day = as_date(target_date)

    if check_day < base_day:
        return False
    if pattern.end_date is not None and check_day > pattern.end_date:
        return False

    interval = pattern.effective_interval
    days_diff = days_between(base_day, check_day)

    if isinstance(pattern, (DailyPattern, CustomPattern)):
        return days_diff % interval == 0
    if isinstance(pattern, WeeklyPattern):
        return days_diff % (interval * 7) == 0
    if isinstance(pattern, MonthlyPattern):
        # Days missing from a short month roll back to its last day.
        expected_day = min(base_day.day, last_day_of_month(check_day))
        return (
            check_day.day == expected_day
            and months_between(base_day, check_day) % interval == 0
        )

    _warn_unrecognized(base)
    return False


def get_next_occurrence(
    current: datetime,
    pattern: RecurrencePattern,
    anchor_day: int | None = None,
) -> datetime:
    """Advance *current* by one step of *pattern*.

    Always moves forward by at least a day. ``anchor_day`` pins monthly steps
    to the series' original day-of-month so a clamp in February does not
    carry over into March.
    """
    interval = pattern.effective_interval

    if isinstance(pattern, (DailyPattern, CustomPattern)):
        return add_days(current, interval)
    if isinstance(pattern, WeeklyPattern):
        return add_weeks(current, interval)
    if isinstance(pattern, MonthlyPattern):
        return add_months(current, interval, day=anchor_day)
    return add_days(current, 1)


def find_next_occurrence(base: Event, from_date: date | datetime) -> datetime:
    """Return the first occurrence of *base* at or after *from_date*.

    The pattern's ``end_date`` is not consulted; callers bound the result.
    """
    start = base.start_time
    from_dt = _window_start(from_date, start.tzinfo)

    if not base.recurs or start >= from_dt:
        return start

    pattern = base.recurrence_pattern
    interval = pattern.effective_interval

    if isinstance(pattern, MonthlyPattern):
        steps = months_between(start, from_dt) // interval
        candidate = start + relativedelta(months=steps * interval)
        while candidate < from_dt:
            steps += 1
            candidate = start + relativedelta(months=steps * interval)
        return candidate

    if isinstance(pattern, WeeklyPattern):
        step = timedelta(weeks=interval)
    elif isinstance(pattern, (DailyPattern, CustomPattern)):
        step = timedelta(days=interval)
    else:
        step = timedelta(days=1)

    steps = -((start - from_dt) // step)
    return start + steps * step


def iter_occurrences(
    base: Event, start: date | datetime | None = None
) -> Iterator[datetime]:
    """Lazily yield occurrence start times of *base*, oldest first.

    The sequence ends at the pattern's ``end_date``; without one it is
    infinite, so slice it. Restart by calling again.
    """
    if not base.recurs:
        if start is None or base.start_time >= _window_start(start, base.start_time.tzinfo):
            yield base.start_time
        return

    pattern = base.recurrence_pattern
    if not pattern.is_recognized:
        _warn_unrecognized(base)
        return

    current = base.start_time if start is None else find_next_occurrence(base, start)
    anchor_day = base.start_time.day
    while pattern.end_date is None or as_date(current) <= pattern.end_date:
        yield current
        current = get_next_occurrence(current, pattern, anchor_day=anchor_day)


# ---------------------------------------------------------------------------
# Instance materialization
# ---------------------------------------------------------------------------


def create_event_instance(base: Event, on: date | datetime) -> Event:
    """Build the instance of *base* on *on*'s calendar day.

    The instance keeps the base's time-of-day and tzinfo and gets the id
    ``{base.id}_{YYYY-MM-DD}``.
    """
    day = as_date(on)
    return base.model_copy(
        update={
            "id": f"{base.id}_{day.isoformat()}",
            "start_time": datetime.combine(day, base.start_time.timetz()),
            "is_recurring_instance": True,
            "parent_event_id": base.id,
        },
        deep=True,
    )


def expand_occurrences(
    base: Event,
    start_date: date | datetime,
    end_date: date | datetime,
    max_iterations: int | None = None,
) -> OccurrenceExpansion:
    """Materialize every instance of *base* inside the window.

    Bare dates cover their whole calendar day; datetimes are exact instants.
    At most ``max_iterations`` instances are produced (default from settings);
    hitting that bound sets ``truncated``.
    """
    if not base.recurs:
        return OccurrenceExpansion()
    if not base.recurrence_pattern.is_recognized:
        _warn_unrecognized(base)
        return OccurrenceExpansion(recognized=False)

    tz = base.start_time.tzinfo
    window_start = _window_start(start_date, tz)
    window_end = _window_end(end_date, tz)
    limit = max_iterations
    if limit is None:
        limit = get_settings().max_expansion_iterations

    instances: list[Event] = []
    for count, current in enumerate(iter_occurrences(base, window_start)):
        if current > window_end:
            break
        if count >= limit:
            logger.warning(
                "Expansion of event %s stopped after %d instances before %s",
                base.id,
                limit,
                window_end.isoformat(),
            )
            return OccurrenceExpansion(instances=instances, truncated=True)
        instances.append(create_event_instance(base, current))

    return OccurrenceExpansion(instances=instances)


def generate_recurring_instances(
    base: Event,
    start_date: date | datetime,
    end_date: date | datetime,
) -> list[Event]:
    return expand_occurrences(base, start_date, end_date).instances


def get_upcoming_occurrences(
    base: Event,
    count: int | None = None,
    now: datetime | None = None,
) -> list[datetime]:
    """Return the next *count* occurrence times of *base* from *now* on.

    Non-recurring events always yield their own start. Fewer than *count*
    results come back when the series ends first.
    """
    if not base.recurs:
        return [base.start_time]

    if count is None:
        count = get_settings().upcoming_default_count
    if now is None:
        now = datetime.now(tz=base.start_time.tzinfo)

    seed = max(base.start_time, now)
    return list(islice(iter_occurrences(base, seed), max(count, 0)))


def get_recurrence_description(pattern: RecurrencePattern) -> str:
    interval = pattern.effective_interval

    if isinstance(pattern, DailyPattern):
        return "Daily" if interval == 1 else f"Every {interval} days"
    if isinstance(pattern, WeeklyPattern):
        return "Weekly" if interval == 1 else f"Every {interval} weeks"
    if isinstance(pattern, MonthlyPattern):
        return "Monthly" if interval == 1 else f"Every {interval} months"
    if isinstance(pattern, CustomPattern):
        return f"Every {interval} days (custom)"
    return "Unknown pattern"
