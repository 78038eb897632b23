"""Guards that keep malformed recurrence rules away from the generator."""

from __future__ import annotations

from datetime import date, datetime

from timetable.config import EndDateBasis, get_settings
from timetable.domain.models import Event, RecurrencePattern, ValidationResult
from timetable.services.dates import as_date

MAX_EVENT_DURATION_MINUTES = 24 * 60


def check_recurrence_pattern(
    pattern: RecurrencePattern | None,
    now: datetime | None = None,
    basis: EndDateBasis | None = None,
    event_start: datetime | None = None,
) -> ValidationResult:
    """Validate a recurrence rule, collecting every problem found.

    With the ``NOW`` basis the end date must fall after today; with
    ``EVENT_START`` it must fall after the event's first day, which lets
    historical series be rebuilt from a backup.
    """
    errors: list[str] = []
    if pattern is None or not pattern.type:
        return ValidationResult.from_errors(["Recurrence type is required"])
    if not pattern.is_recognized:
        errors.append(f"Unknown recurrence type: {pattern.type}")
    if pattern.interval < 1:
        errors.append("Recurrence interval must be at least 1")

    if pattern.end_date is not None:
        basis = basis or get_settings().end_date_basis
        if basis == EndDateBasis.EVENT_START and event_start is not None:
            reference: date = as_date(event_start)
            if pattern.end_date < reference:
                errors.append("Recurrence end date must not be before the event start")
        else:
            reference = as_date(now or datetime.now())
            if pattern.end_date <= reference:
                errors.append("Recurrence end date must be in the future")

    return ValidationResult.from_errors(errors)


def validate_recurrence_pattern(
    pattern: RecurrencePattern | None,
    now: datetime | None = None,
    basis: EndDateBasis | None = None,
    event_start: datetime | None = None,
) -> bool:
    return check_recurrence_pattern(pattern, now, basis, event_start).is_valid


def validate_event_timing(
    event: Event,
    now: datetime | None = None,
    basis: EndDateBasis | None = None,
) -> ValidationResult:
    """Check the time-related fields of an event before it is stored."""
    errors: list[str] = []
    if event.duration > MAX_EVENT_DURATION_MINUTES:
        errors.append("Duration cannot exceed 24 hours")
    if event.is_recurring:
        if event.recurrence_pattern is None:
            errors.append("Recurring events need a recurrence pattern")
        else:
            result = check_recurrence_pattern(
                event.recurrence_pattern, now, basis, event.start_time
            )
            errors.extend(result.errors)
    return ValidationResult.from_errors(errors)
