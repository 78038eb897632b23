"""Service for merging one-off events and recurring instances into a single
ordered view of a day or a date range."""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable

from timetable.domain.models import Event, ScheduleView
from timetable.services.dates import end_of_day, is_same_day, start_of_day
from timetable.services.recurrence import (
    create_event_instance,
    expand_occurrences,
    should_event_occur_on_date,
)


def _by_start(events: list[Event]) -> list[Event]:
    # sorted() is stable, so equal start times keep insertion order.
    return sorted(events, key=lambda e: e.start_time)


def _in_window(event: Event, start: date | datetime, end: date | datetime) -> bool:
    tz = event.start_time.tzinfo
    lower = start if isinstance(start, datetime) else start_of_day(start, tz)
    upper = end if isinstance(end, datetime) else end_of_day(end, tz)
    return lower <= event.start_time <= upper


def get_recurring_events_for_date(
    recurring_bases: Iterable[Event], target_date: date | datetime
) -> list[Event]:
    return [
        create_event_instance(base, target_date)
        for base in recurring_bases
        if should_event_occur_on_date(base, target_date)
    ]


def get_events_for_date(
    regular_events: Iterable[Event],
    recurring_bases: Iterable[Event],
    target_date: date | datetime,
) -> list[Event]:
    """Return everything scheduled on *target_date*, earliest first."""
    day_events = [e for e in regular_events if is_same_day(e.start_time, target_date)]
    instances = get_recurring_events_for_date(recurring_bases, target_date)
    return _by_start(day_events + instances)


def expand_range(
    regular_events: Iterable[Event],
    recurring_bases: Iterable[Event],
    start_date: date | datetime,
    end_date: date | datetime,
) -> ScheduleView:
    """Merge regular events and recurring instances inside the window.

    Bases whose expansion hit the iteration bound, or whose rule type is
    unknown, are listed on the returned view.
    """
    view = ScheduleView()
    merged = [e for e in regular_events if _in_window(e, start_date, end_date)]

    for base in recurring_bases:
        expansion = expand_occurrences(base, start_date, end_date)
        merged.extend(expansion.instances)
        if expansion.truncated:
            view.truncated_event_ids.append(base.id)
        if not expansion.recognized:
            view.unrecognized_event_ids.append(base.id)

    view.events = _by_start(merged)
    return view


def get_events_in_range(
    regular_events: Iterable[Event],
    recurring_bases: Iterable[Event],
    start_date: date | datetime,
    end_date: date | datetime,
) -> list[Event]:
    return expand_range(regular_events, recurring_bases, start_date, end_date).events
