"""Domain events emitted by the schedule service."""

from __future__ import annotations

from pydantic import BaseModel


class EventStored(BaseModel):
    """Fired when a base event is added or replaced in the store."""

    event_id: str


class EventDeleted(BaseModel):
    event_id: str


class ConflictDetected(BaseModel):
    """Fired when a candidate event overlaps existing ones and is rejected."""

    event_id: str
    conflicting_event_ids: list[str]


class PatternUnrecognized(BaseModel):
    """Fired when a stored event carries a recurrence type we cannot expand."""

    event_id: str
    pattern_type: str


class ExpansionTruncated(BaseModel):
    """Fired when a range query stopped expanding an event at the iteration bound."""

    event_id: str


class BackupRestored(BaseModel):
    event_count: int
