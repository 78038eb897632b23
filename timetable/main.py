"""FastAPI application — entry point for the timetable schedule service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, datetime

import dateparser
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from timetable.config import get_settings
from timetable.domain.bus import EventBus
from timetable.domain.handlers import HandlerRegistry
from timetable.domain.models import (
    Backup,
    ConflictCheckResponse,
    Event,
    EventCreateRequest,
    ScheduleView,
    UpcomingResponse,
    ValidationResult,
)
from timetable.logging_config import configure_logging
from timetable.repos.memory import EventRepository
from timetable.services.recurrence import (
    RECURRENCE_PRESETS,
    get_recurrence_description,
)
from timetable.services.schedule import ScheduleService
from timetable.services.validation import validate_event_timing

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level, settings.log_file)
    yield


app = FastAPI(title="Timetable Schedule Service", lifespan=lifespan)

# ── Composition root: one of each, shared by every route ──────────────
event_bus = EventBus()
event_repo = EventRepository()
handler_registry = HandlerRegistry(bus=event_bus)
schedule = ScheduleService(repo=event_repo, bus=event_bus, settings=settings)


def _parse_date(raw: str, field: str) -> date:
    """Parse an ISO or natural-language date ("tomorrow", "next monday")."""
    parsed = dateparser.parse(
        raw,
        settings={
            "PREFER_DATES_FROM": "future",
            "RELATIVE_BASE": datetime.now(),
            "RETURN_AS_TIMEZONE_AWARE": False,
        },
    )
    if parsed is None:
        raise HTTPException(status_code=422, detail=f"Could not parse {field}: {raw!r}")
    return parsed.date()


def _get_or_404(event_id: str) -> Event:
    event = event_repo.get(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def _write_response(event: Event, result: ValidationResult, status_code: int):
    if result.is_valid:
        return JSONResponse(status_code=status_code, content=event.model_dump(mode="json"))
    conflicting = handler_registry.conflicts.get(event.id)
    if conflicting:
        raise HTTPException(
            status_code=409,
            detail={"errors": result.errors, "conflicting_event_ids": conflicting},
        )
    raise HTTPException(status_code=422, detail={"errors": result.errors})


# ── Events ────────────────────────────────────────────────────────────


@app.get("/events", response_model=list[Event])
def list_events() -> list[Event]:
    """Return all stored base events."""
    return event_repo.list_all()


@app.post("/events", response_model=Event, status_code=201)
def create_event(body: EventCreateRequest):
    """Validate and store a new base event."""
    event = body.to_event()
    handler_registry.clear_conflicts(event.id)
    return _write_response(event, schedule.add_event(event), 201)


@app.get("/events/{event_id}", response_model=Event)
def get_event(event_id: str) -> Event:
    return _get_or_404(event_id)


@app.put("/events/{event_id}", response_model=Event)
def update_event(event_id: str, body: EventCreateRequest):
    _get_or_404(event_id)
    event = Event(id=event_id, **body.model_dump())
    handler_registry.clear_conflicts(event_id)
    return _write_response(event, schedule.update_event(event), 200)


@app.delete("/events/{event_id}", status_code=200)
def delete_event(event_id: str) -> dict:
    _get_or_404(event_id)
    schedule.delete_event(event_id)
    return {"status": "deleted"}


@app.get("/events/{event_id}/upcoming", response_model=UpcomingResponse)
def upcoming_occurrences(
    event_id: str, count: int | None = Query(default=None, ge=1, le=100)
) -> UpcomingResponse:
    event = _get_or_404(event_id)
    return UpcomingResponse(
        event_id=event_id,
        description=(
            get_recurrence_description(event.recurrence_pattern) if event.recurs else None
        ),
        occurrences=schedule.upcoming(event_id, count),
    )


# ── Schedule views ────────────────────────────────────────────────────


@app.get("/schedule/day", response_model=list[Event])
def schedule_for_day(day: str = Query(..., alias="date")) -> list[Event]:
    """Return regular events and recurring instances on one day."""
    return schedule.events_for_date(_parse_date(day, "date"))


@app.get("/schedule/range", response_model=ScheduleView)
def schedule_for_range(start: str = Query(...), end: str = Query(...)) -> ScheduleView:
    start_date = _parse_date(start, "start")
    end_date = _parse_date(end, "end")
    if end_date < start_date:
        raise HTTPException(status_code=422, detail="end must not be before start")
    return schedule.events_in_range(start_date, end_date)


# ── Conflicts ─────────────────────────────────────────────────────────


@app.post("/conflicts/check", response_model=ConflictCheckResponse)
def check_conflicts(body: EventCreateRequest) -> ConflictCheckResponse:
    """Report what a candidate would collide with, without storing it."""
    candidate = body.to_event()
    timing = validate_event_timing(candidate, basis=settings.end_date_basis)
    if not timing.is_valid:
        return ConflictCheckResponse(validation=timing)
    validation, conflicts = schedule.check_conflicts(candidate)
    return ConflictCheckResponse(validation=validation, conflicts=conflicts)


@app.get("/conflicts")
def pending_conflicts() -> dict[str, list[str]]:
    """Return the overlaps recorded for recently rejected writes."""
    return handler_registry.conflicts


@app.delete("/conflicts", status_code=200)
def clear_conflicts() -> dict:
    handler_registry.clear_conflicts()
    return {"status": "cleared"}


# ── Recurrence helpers ────────────────────────────────────────────────


@app.get("/patterns/presets")
def recurrence_presets() -> dict:
    return {
        name: {
            "pattern": pattern.model_dump(mode="json"),
            "description": get_recurrence_description(pattern),
        }
        for name, pattern in RECURRENCE_PRESETS.items()
    }


# ── Backup ────────────────────────────────────────────────────────────


@app.get("/backup", response_model=Backup)
def export_backup() -> Backup:
    return schedule.export_backup()


@app.post("/backup/restore", response_model=ValidationResult)
def restore_backup(body: Backup) -> ValidationResult:
    result = schedule.restore_backup(body)
    if not result.is_valid:
        raise HTTPException(status_code=422, detail={"errors": result.errors})
    return result
