"""Tests for the schedule service, the bus and the diagnostic handlers."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from timetable.config import Settings
from timetable.domain.bus import EventBus
from timetable.domain.events import ConflictDetected, EventStored
from timetable.domain.handlers import HandlerRegistry
from timetable.domain.models import Backup, DailyPattern, Event, WeeklyPattern
from timetable.repos.memory import EventRepository
from timetable.services.recurrence import create_event_instance
from timetable.services.schedule import ScheduleService

_NOW = datetime(2030, 6, 1, 12, 0)


@pytest.fixture()
def env():
    """Fresh bus + repo + registry + service for each test."""
    bus = EventBus()
    repo = EventRepository()
    registry = HandlerRegistry(bus=bus)
    service = ScheduleService(repo=repo, bus=bus, settings=Settings())

    class Env:
        pass

    e = Env()
    e.bus = bus
    e.repo = repo
    e.registry = registry
    e.service = service
    return e


def _make_event(**overrides) -> Event:
    defaults = dict(
        title="Test event",
        start_time=_NOW + timedelta(days=1),
        duration=60,
    )
    defaults.update(overrides)
    return Event(**defaults)


def _standup(**overrides) -> Event:
    defaults = dict(
        id="standup",
        title="Standup",
        start_time=datetime(2030, 6, 3, 9, 0),
        duration=30,
        is_recurring=True,
        recurrence_pattern=DailyPattern(interval=1),
    )
    defaults.update(overrides)
    return Event(**defaults)


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------


def test_bus_unsubscribe():
    bus = EventBus()
    seen: list[str] = []
    unsubscribe = bus.subscribe(EventStored, lambda e: seen.append(e.event_id))

    bus.publish(EventStored(event_id="a"))
    unsubscribe()
    bus.publish(EventStored(event_id="b"))

    assert seen == ["a"]


def test_bus_only_delivers_matching_type():
    bus = EventBus()
    seen: list = []
    bus.subscribe(ConflictDetected, seen.append)
    bus.publish(EventStored(event_id="a"))
    assert seen == []


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def test_add_event_stores_and_publishes(env):
    stored: list[str] = []
    env.bus.subscribe(EventStored, lambda e: stored.append(e.event_id))

    event = _make_event()
    result = env.service.add_event(event, now=_NOW)

    assert result.is_valid is True
    assert env.repo.get(event.id) is event
    assert stored == [event.id]


def test_conflicting_event_is_rejected_and_recorded(env):
    existing = _make_event(title="Existing meeting")
    env.service.add_event(existing, now=_NOW)

    new_event = _make_event(
        title="Conflicting meeting", start_time=existing.start_time + timedelta(minutes=30)
    )
    result = env.service.add_event(new_event, now=_NOW)

    assert result.is_valid is False
    assert result.errors == ["Event conflicts with 1 existing event(s)"]
    assert env.repo.get(new_event.id) is None
    assert env.registry.conflicts[new_event.id] == [existing.id]


def test_back_to_back_events_are_accepted(env):
    first = _make_event()
    env.service.add_event(first, now=_NOW)

    second = _make_event(start_time=first.end_time)
    assert env.service.add_event(second, now=_NOW).is_valid is True


def test_conflict_with_recurring_instance(env):
    env.service.add_event(_standup(), now=_NOW)

    dentist = _make_event(title="Dentist", start_time=datetime(2030, 6, 10, 9, 15))
    result = env.service.add_event(dentist, now=_NOW)

    assert result.is_valid is False
    assert env.registry.conflicts[dentist.id] == ["standup_2030-06-10"]


def test_event_spilling_over_midnight_conflicts(env):
    late = _make_event(title="Night shift", start_time=datetime(2030, 6, 10, 22, 0), duration=240)
    env.service.add_event(late, now=_NOW)

    early = _make_event(title="Early call", start_time=datetime(2030, 6, 11, 1, 0), duration=30)
    assert env.service.add_event(early, now=_NOW).is_valid is False


def test_invalid_pattern_is_rejected_before_conflict_check(env):
    event = _standup(recurrence_pattern=DailyPattern(interval=0))
    result = env.service.add_event(event, now=_NOW)

    assert result.is_valid is False
    assert result.errors == ["Recurrence interval must be at least 1"]
    assert env.registry.conflicts == {}


def test_update_ignores_its_own_stored_copy(env):
    env.service.add_event(_standup(), now=_NOW)

    moved = _standup(start_time=datetime(2030, 6, 3, 9, 15))
    assert env.service.update_event(moved, now=_NOW).is_valid is True
    assert env.repo.get("standup").start_time == datetime(2030, 6, 3, 9, 15)


def test_successful_write_clears_recorded_conflict(env):
    existing = _make_event()
    env.service.add_event(existing, now=_NOW)
    candidate = _make_event(id="retry", start_time=existing.start_time)
    env.service.add_event(candidate, now=_NOW)
    assert "retry" in env.registry.conflicts

    rescheduled = _make_event(id="retry", start_time=existing.end_time)
    env.service.add_event(rescheduled, now=_NOW)
    assert "retry" not in env.registry.conflicts


def test_update_unknown_event_raises(env):
    with pytest.raises(KeyError):
        env.service.update_event(_make_event(), now=_NOW)


def test_delete_event(env):
    event = _make_event()
    env.service.add_event(event, now=_NOW)
    env.service.delete_event(event.id)
    assert env.repo.list_all() == []

    with pytest.raises(KeyError):
        env.service.delete_event(event.id)


def test_repository_refuses_generated_instances(env):
    instance = create_event_instance(_standup(), date(2030, 6, 5))
    with pytest.raises(ValueError):
        env.repo.add(instance)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def test_events_for_date_uses_stored_events(env):
    env.service.add_event(_standup(), now=_NOW)
    lunch = _make_event(title="Lunch", start_time=datetime(2030, 6, 4, 12, 0))
    env.service.add_event(lunch, now=_NOW)

    events = env.service.events_for_date(date(2030, 6, 4))
    assert [e.id for e in events] == ["standup_2030-06-04", lunch.id]
    # Queries never write instances back.
    assert len(env.repo.list_all()) == 2


def test_range_query_flags_runaway_and_unknown_rules(env):
    # Stored straight into the repo, the way legacy data would arrive.
    env.repo.add(_standup(id="runaway", recurrence_pattern=DailyPattern(interval=0)))
    env.repo.add(_standup(id="mystery", recurrence_pattern={"type": "yearly"}))

    view = env.service.events_in_range(date(2030, 6, 1), date(2040, 1, 1))

    assert view.truncated_event_ids == ["runaway"]
    assert env.registry.truncated == {"runaway"}
    assert env.registry.unrecognized == {"mystery": "yearly"}


def test_upcoming_through_service(env):
    env.service.add_event(_standup(), now=_NOW)
    upcoming = env.service.upcoming("standup", 3, now=datetime(2030, 6, 10, 10, 0))
    assert upcoming == [datetime(2030, 6, d, 9, 0) for d in (11, 12, 13)]

    with pytest.raises(KeyError):
        env.service.upcoming("missing")


def test_closed_registry_stops_listening(env):
    env.registry.close()
    existing = _make_event()
    env.service.add_event(existing, now=_NOW)
    env.service.add_event(_make_event(start_time=existing.start_time), now=_NOW)
    assert env.registry.conflicts == {}


# ---------------------------------------------------------------------------
# Backup / restore
# ---------------------------------------------------------------------------


def test_backup_contains_only_base_events(env):
    env.service.add_event(_standup(), now=_NOW)
    env.service.events_in_range(date(2030, 6, 1), date(2030, 6, 30))

    backup = env.service.export_backup()

    assert backup.version == 1
    assert [e.id for e in backup.events] == ["standup"]
    assert not any(e.is_recurring_instance for e in backup.events)


def test_restore_accepts_finished_series(env):
    finished = _standup(
        id="old-course",
        start_time=datetime(2020, 1, 6, 18, 0),
        recurrence_pattern=WeeklyPattern(end_date=date(2020, 3, 30)),
    )
    # A fresh write of the same series is refused: its end date has passed.
    assert env.service.add_event(finished, now=_NOW).is_valid is False

    backup = Backup(version=1, created_at=datetime.now(timezone.utc), events=[finished])
    result = env.service.restore_backup(backup)

    assert result.is_valid is True
    assert env.repo.get("old-course") is not None


def test_restore_rejects_instances_and_changes_nothing(env):
    keep = _make_event(id="keep")
    env.service.add_event(keep, now=_NOW)

    instance = create_event_instance(_standup(), date(2030, 6, 5))
    backup = Backup(version=1, created_at=datetime.now(timezone.utc), events=[instance])
    result = env.service.restore_backup(backup)

    assert result.is_valid is False
    assert "recurring instances cannot be restored" in result.errors[0]
    assert [e.id for e in env.repo.list_all()] == ["keep"]


def test_restore_rejects_newer_backup_version(env):
    backup = Backup(version=99, created_at=datetime.now(timezone.utc), events=[])
    result = env.service.restore_backup(backup)
    assert result.errors == ["Unsupported backup version 99"]


def test_restore_rejects_duplicate_ids_and_changes_nothing(env):
    keep = _make_event(id="keep")
    env.service.add_event(keep, now=_NOW)

    first = _make_event(id="dup", title="First")
    second = _make_event(id="dup", title="Second", start_time=_NOW + timedelta(days=2))
    backup = Backup(
        version=1, created_at=datetime.now(timezone.utc), events=[first, second]
    )
    result = env.service.restore_backup(backup)

    assert result.is_valid is False
    assert result.errors == ["dup: duplicate event id"]
    assert [e.id for e in env.repo.list_all()] == ["keep"]


def test_repository_replace_all_refuses_duplicate_ids(env):
    env.repo.add(_make_event(id="keep"))
    with pytest.raises(ValueError):
        env.repo.replace_all([_make_event(id="dup"), _make_event(id="dup")])
    assert [e.id for e in env.repo.list_all()] == ["keep"]


def test_restore_rejects_mixed_naive_and_aware_start_times(env):
    naive = _make_event(id="naive")
    aware = _make_event(
        id="aware", start_time=datetime(2030, 6, 5, 9, 0, tzinfo=timezone.utc)
    )
    backup = Backup(version=1, created_at=datetime.now(timezone.utc), events=[naive, aware])

    result = env.service.restore_backup(backup)

    assert result.errors == ["Backup mixes naive and timezone-aware start times"]
    assert env.repo.list_all() == []


# ---------------------------------------------------------------------------
# Naive / aware start times
# ---------------------------------------------------------------------------


def test_aware_event_is_rejected_when_store_is_naive(env):
    env.service.add_event(_make_event(id="naive"), now=_NOW)
    aware = _make_event(
        id="aware", start_time=datetime(2030, 6, 2, 12, 0, tzinfo=timezone.utc)
    )

    result = env.service.add_event(aware, now=_NOW)

    assert result.is_valid is False
    assert result.errors == [
        "Start time must not carry a timezone; stored events are naive"
    ]
    assert env.repo.get("aware") is None
    assert env.registry.conflicts == {}


def test_naive_event_is_rejected_when_store_is_aware(env):
    aware_now = _NOW.replace(tzinfo=timezone.utc)
    env.service.add_event(
        _make_event(id="aware", start_time=aware_now + timedelta(days=1)), now=aware_now
    )

    result = env.service.add_event(_make_event(id="naive"), now=_NOW)

    assert result.errors == [
        "Start time must carry a timezone; stored events are timezone-aware"
    ]


def test_aware_events_check_conflicts_among_themselves(env):
    aware_now = _NOW.replace(tzinfo=timezone.utc)
    start = datetime(2030, 6, 2, 12, 0, tzinfo=timezone.utc)
    env.service.add_event(_make_event(id="first", start_time=start), now=aware_now)

    result, conflicts = env.service.check_conflicts(
        _make_event(start_time=start + timedelta(minutes=30))
    )

    assert result.errors == ["Event conflicts with 1 existing event(s)"]
    assert [c.id for c in conflicts] == ["first"]
