"""Domain event handlers — wired up at application startup."""

from __future__ import annotations

import logging

from timetable.domain.bus import EventBus
from timetable.domain.events import (
    BackupRestored,
    ConflictDetected,
    EventDeleted,
    EventStored,
    ExpansionTruncated,
    PatternUnrecognized,
)

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Keeps the schedule's diagnostic state in step with published events.

    ``conflicts`` maps a rejected event id to the ids it overlapped, the way
    a form would show them until the user reschedules or dismisses them.
    """

    def __init__(self, bus: EventBus) -> None:
        self.bus = bus
        self.conflicts: dict[str, list[str]] = {}
        self.unrecognized: dict[str, str] = {}
        self.truncated: set[str] = set()
        self._unsubscribers = self._register()

    def _register(self) -> list:
        return [
            self.bus.subscribe(ConflictDetected, self.on_conflict_detected),
            self.bus.subscribe(EventStored, self.on_event_stored),
            self.bus.subscribe(EventDeleted, self.on_event_deleted),
            self.bus.subscribe(PatternUnrecognized, self.on_pattern_unrecognized),
            self.bus.subscribe(ExpansionTruncated, self.on_expansion_truncated),
            self.bus.subscribe(BackupRestored, self.on_backup_restored),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def clear_conflicts(self, event_id: str | None = None) -> None:
        if event_id is None:
            self.conflicts.clear()
        else:
            self.conflicts.pop(event_id, None)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_conflict_detected(self, event: ConflictDetected) -> None:
        self.conflicts[event.event_id] = list(event.conflicting_event_ids)

    def _forget(self, event_id: str) -> None:
        self.conflicts.pop(event_id, None)
        self.unrecognized.pop(event_id, None)
        self.truncated.discard(event_id)

    def on_event_stored(self, event: EventStored) -> None:
        # A successful write supersedes any earlier rejection.
        self._forget(event.event_id)

    def on_event_deleted(self, event: EventDeleted) -> None:
        self._forget(event.event_id)

    def on_pattern_unrecognized(self, event: PatternUnrecognized) -> None:
        if event.event_id not in self.unrecognized:
            logger.warning(
                "Event %s uses unknown recurrence type %r",
                event.event_id,
                event.pattern_type,
            )
        self.unrecognized[event.event_id] = event.pattern_type

    def on_expansion_truncated(self, event: ExpansionTruncated) -> None:
        self.truncated.add(event.event_id)

    def on_backup_restored(self, event: BackupRestored) -> None:
        self.conflicts.clear()
        self.unrecognized.clear()
        self.truncated.clear()
