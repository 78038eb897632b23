"""Schedule service: the single writer in front of the base-event store.

Every query recomputes from the stored base events; generated instances are
handed back to the caller and never written anywhere.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from timetable.config import EndDateBasis, Settings
from timetable.domain.bus import EventBus
from timetable.domain.events import (
    BackupRestored,
    ConflictDetected,
    EventDeleted,
    EventStored,
    ExpansionTruncated,
    PatternUnrecognized,
)
from timetable.domain.models import Backup, Event, ScheduleView, ValidationResult
from timetable.repos.memory import EventRepository
from timetable.services.aggregator import expand_range, get_events_for_date
from timetable.services.conflicts import check_event_conflicts
from timetable.services.recurrence import get_upcoming_occurrences
from timetable.services.validation import validate_event_timing

logger = logging.getLogger(__name__)


def _is_aware(value: datetime) -> bool:
    return value.tzinfo is not None and value.utcoffset() is not None


class ScheduleService:
    def __init__(self, repo: EventRepository, bus: EventBus, settings: Settings) -> None:
        self.repo = repo
        self.bus = bus
        self.settings = settings

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_event(self, event: Event, now: datetime | None = None) -> ValidationResult:
        """Validate *event* and store it when it is valid and conflict-free."""
        result = self._validate_write(event, now)
        if result.is_valid:
            self.repo.add(event)
            logger.info("Stored event %s (%s)", event.id, event.title)
            self.bus.publish(EventStored(event_id=event.id))
        return result

    def update_event(self, event: Event, now: datetime | None = None) -> ValidationResult:
        if self.repo.get(event.id) is None:
            raise KeyError(event.id)
        return self.add_event(event, now)

    def delete_event(self, event_id: str) -> None:
        self.repo.delete(event_id)
        logger.info("Deleted event %s", event_id)
        self.bus.publish(EventDeleted(event_id=event_id))

    def _validate_write(self, event: Event, now: datetime | None) -> ValidationResult:
        result = validate_event_timing(event, now=now, basis=self.settings.end_date_basis)
        if not result.is_valid:
            return result

        result, conflicts = self.check_conflicts(event)
        if conflicts:
            logger.info("Event %s conflicts with %d event(s)", event.id, len(conflicts))
            self.bus.publish(
                ConflictDetected(
                    event_id=event.id,
                    conflicting_event_ids=[c.id for c in conflicts],
                )
            )
        return result

    def _awareness_errors(self, candidate: Event) -> list[str]:
        """Naive and timezone-aware start times cannot be compared, so the
        store holds only one kind."""
        aware = _is_aware(candidate.start_time)
        for other in self.repo.list_all():
            if _is_aware(other.start_time) != aware:
                if aware:
                    return ["Start time must not carry a timezone; stored events are naive"]
                return ["Start time must carry a timezone; stored events are timezone-aware"]
        return []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def check_conflicts(self, candidate: Event) -> tuple[ValidationResult, list[Event]]:
        """Validate *candidate* against what is scheduled around its first
        occurrence and return the overlapping events with the result."""
        errors = self._awareness_errors(candidate)
        if errors:
            return ValidationResult.from_errors(errors), []
        return check_event_conflicts(candidate, self._neighbours(candidate))

    def find_conflicts(self, candidate: Event) -> list[Event]:
        """Return scheduled events overlapping *candidate*'s first occurrence."""
        _, conflicts = self.check_conflicts(candidate)
        return conflicts

    def _neighbours(self, candidate: Event) -> list[Event]:
        # The window starts a day early so events running past midnight are
        # compared too. The candidate's own stored copy and its instances are
        # ignored.
        window_start = candidate.start_time - timedelta(days=1)
        view = self._expand(window_start, candidate.end_time)
        return [
            e
            for e in view.events
            if e.id != candidate.id and e.parent_event_id != candidate.id
        ]

    def events_for_date(self, target_date: date | datetime) -> list[Event]:
        return get_events_for_date(
            self.repo.list_regular(), self.repo.list_recurring(), target_date
        )

    def events_in_range(
        self, start_date: date | datetime, end_date: date | datetime
    ) -> ScheduleView:
        return self._expand(start_date, end_date)

    def upcoming(
        self, event_id: str, count: int | None = None, now: datetime | None = None
    ) -> list[datetime]:
        event = self.repo.get(event_id)
        if event is None:
            raise KeyError(event_id)
        return get_upcoming_occurrences(event, count, now)

    def _expand(self, start_date: date | datetime, end_date: date | datetime) -> ScheduleView:
        view = expand_range(
            self.repo.list_regular(), self.repo.list_recurring(), start_date, end_date
        )
        for event_id in view.truncated_event_ids:
            self.bus.publish(ExpansionTruncated(event_id=event_id))
        for event_id in view.unrecognized_event_ids:
            stored = self.repo.get(event_id)
            self.bus.publish(
                PatternUnrecognized(
                    event_id=event_id,
                    pattern_type=stored.recurrence_pattern.type if stored else "",
                )
            )
        return view

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def export_backup(self) -> Backup:
        return self.repo.to_backup(self.settings.backup_version)

    def restore_backup(self, backup: Backup) -> ValidationResult:
        """Replace the store with *backup*'s base events.

        Recurrence end dates are checked against each event's own start so
        finished series can be restored. Nothing is written if any entry is
        invalid.
        """
        errors: list[str] = []
        if backup.version > self.settings.backup_version:
            errors.append(f"Unsupported backup version {backup.version}")
        if len({_is_aware(e.start_time) for e in backup.events}) > 1:
            errors.append("Backup mixes naive and timezone-aware start times")
        seen: set[str] = set()
        for event in backup.events:
            if event.id in seen:
                errors.append(f"{event.id}: duplicate event id")
                continue
            seen.add(event.id)
            if event.is_recurring_instance:
                errors.append(f"{event.id}: recurring instances cannot be restored")
                continue
            result = validate_event_timing(event, basis=EndDateBasis.EVENT_START)
            errors.extend(f"{event.id}: {message}" for message in result.errors)

        if errors:
            logger.warning("Backup restore rejected with %d error(s)", len(errors))
            return ValidationResult.from_errors(errors)

        self.repo.replace_all(backup.events)
        logger.info("Restored %d event(s) from backup", len(backup.events))
        self.bus.publish(BackupRestored(event_count=len(backup.events)))
        return ValidationResult(is_valid=True)
