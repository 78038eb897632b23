"""Service for detecting scheduling conflicts between events."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from timetable.domain.models import Event, ValidationResult


def find_conflicts(
    new_start: datetime,
    new_end: datetime,
    existing_events: Iterable[Event],
) -> list[Event]:
    """Return existing events that overlap with the given time range.

    Overlap rule: conflict if new_start < existing.end_time AND existing.start_time < new_end.
    Exact boundary touches (end == start) are NOT considered conflicts.
    """
    return [
        event
        for event in existing_events
        if new_start < event.end_time and event.start_time < new_end
    ]


def check_event_overlap(a: Event, b: Event) -> bool:
    return bool(find_conflicts(a.start_time, a.end_time, [b]))


def find_conflicting_events(candidate: Event, existing_events: Iterable[Event]) -> list[Event]:
    """Return the events in *existing_events* that overlap *candidate*.

    Events sharing the candidate's id (the stored copy of an event being
    edited) are skipped. Input order is preserved.
    """
    others = (e for e in existing_events if e.id != candidate.id)
    return find_conflicts(candidate.start_time, candidate.end_time, others)


def check_event_conflicts(
    candidate: Event, existing_events: Iterable[Event]
) -> tuple[ValidationResult, list[Event]]:
    """Validate *candidate* against *existing_events*, keeping the overlaps."""
    conflicts = find_conflicting_events(candidate, existing_events)
    errors = []
    if conflicts:
        errors.append(f"Event conflicts with {len(conflicts)} existing event(s)")
    return ValidationResult.from_errors(errors), conflicts


def validate_event_conflicts(
    candidate: Event, existing_events: Iterable[Event]
) -> ValidationResult:
    result, _ = check_event_conflicts(candidate, existing_events)
    return result
