"""In-memory store for base events."""

from __future__ import annotations

from datetime import datetime, timezone

from timetable.domain.models import Backup, Event


class EventRepository:
    """Dict-backed store for base Event instances, keyed by id.

    Generated recurring instances are never accepted.
    """

    def __init__(self) -> None:
        self._store: dict[str, Event] = {}

    @staticmethod
    def _check_storable(event: Event) -> None:
        if event.is_recurring_instance:
            raise ValueError(
                f"Recurring instance {event.id} cannot be stored; store its parent "
                f"{event.parent_event_id} instead"
            )

    def add(self, event: Event) -> None:
        self._check_storable(event)
        self._store[event.id] = event

    def get(self, event_id: str) -> Event | None:
        return self._store.get(event_id)

    def list_all(self) -> list[Event]:
        return list(self._store.values())

    def list_regular(self) -> list[Event]:
        return [e for e in self._store.values() if not e.recurs]

    def list_recurring(self) -> list[Event]:
        return [e for e in self._store.values() if e.recurs]

    def delete(self, event_id: str) -> None:
        if event_id not in self._store:
            raise KeyError(event_id)
        del self._store[event_id]

    def replace_all(self, events: list[Event]) -> None:
        """Swap the whole contents; nothing changes if any event is refused."""
        for event in events:
            self._check_storable(event)
        store = {e.id: e for e in events}
        if len(store) != len(events):
            raise ValueError("Event ids must be unique")
        self._store = store

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def to_backup(self, version: int) -> Backup:
        return Backup(
            version=version,
            created_at=datetime.now(timezone.utc),
            events=[e.model_copy(deep=True) for e in self._store.values()],
        )
