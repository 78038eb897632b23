"""Domain models for the timetable recurrence engine."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    Discriminator,
    Field,
    Tag,
    field_validator,
    model_validator,
)

try:
    from enum import StrEnum
except ImportError:  # pragma: no cover - fallback for older Python runtimes

    class StrEnum(str, Enum):
        pass


class RecurrenceType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class EventCategory(StrEnum):
    WORK = "work"
    PERSONAL = "personal"
    HEALTH = "health"
    OTHER = "other"


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Recurrence patterns
# ---------------------------------------------------------------------------


class _PatternBase(BaseModel):
    # No lower bound here; validation enforces interval >= 1.
    interval: int = 1
    end_date: date | None = None

    @field_validator("end_date", mode="before")
    @classmethod
    def _end_date_as_calendar_day(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date()
        return value

    @property
    def effective_interval(self) -> int:
        """Step count used by the generator; never below one."""
        return max(self.interval, 1)

    @property
    def is_recognized(self) -> bool:
        return True


class DailyPattern(_PatternBase):
    type: Literal["daily"] = "daily"


class WeeklyPattern(_PatternBase):
    type: Literal["weekly"] = "weekly"


class MonthlyPattern(_PatternBase):
    type: Literal["monthly"] = "monthly"
    day_of_month: int | None = Field(default=None, ge=1, le=31)


class CustomPattern(_PatternBase):
    type: Literal["custom"] = "custom"
    # 0 = Sunday ... 6 = Saturday
    days_of_week: list[int] = Field(default_factory=list)

    @field_validator("days_of_week")
    @classmethod
    def _days_in_week(cls, value: list[int]) -> list[int]:
        for day in value:
            if not 0 <= day <= 6:
                raise ValueError("days_of_week entries must be between 0 and 6")
        return sorted(set(value))


class UnrecognizedPattern(_PatternBase):
    """A rule whose ``type`` tag this version does not understand.

    Kept as a distinct value so corrupted or forward-incompatible data is
    visible to callers instead of passing for a daily rule.
    """

    type: str = ""

    @property
    def is_recognized(self) -> bool:
        return False


_KNOWN_TAGS = {t.value for t in RecurrenceType}


def _pattern_tag(value: Any) -> str:
    if isinstance(value, dict):
        tag = value.get("type")
    else:
        tag = getattr(value, "type", None)
    return tag if tag in _KNOWN_TAGS else "unrecognized"


RecurrencePattern = Annotated[
    Union[
        Annotated[DailyPattern, Tag("daily")],
        Annotated[WeeklyPattern, Tag("weekly")],
        Annotated[MonthlyPattern, Tag("monthly")],
        Annotated[CustomPattern, Tag("custom")],
        Annotated[UnrecognizedPattern, Tag("unrecognized")],
    ],
    Discriminator(_pattern_tag),
]


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Event(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    description: str | None = None
    start_time: datetime
    duration: int = Field(gt=0, description="Length in minutes")
    category: EventCategory = EventCategory.OTHER
    notification_enabled: bool = True
    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern | None = None
    is_recurring_instance: bool = False
    parent_event_id: str | None = None

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration)

    @property
    def recurs(self) -> bool:
        """True when the event carries a usable recurrence rule."""
        return self.is_recurring and self.recurrence_pattern is not None

    @model_validator(mode="after")
    def _instance_has_parent(self) -> Event:
        if self.is_recurring_instance and not self.parent_event_id:
            raise ValueError("recurring instances must reference a parent event")
        return self


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[str]) -> ValidationResult:
        return cls(is_valid=not errors, errors=errors)


class OccurrenceExpansion(BaseModel):
    """Instances materialized for one base event over a window."""

    instances: list[Event] = Field(default_factory=list)
    truncated: bool = False
    recognized: bool = True


class ScheduleView(BaseModel):
    """Merged, ordered events for a window plus per-base diagnostics."""

    events: list[Event] = Field(default_factory=list)
    truncated_event_ids: list[str] = Field(default_factory=list)
    unrecognized_event_ids: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class EventCreateRequest(BaseModel):
    title: str
    description: str | None = None
    start_time: datetime
    duration: int = Field(gt=0)
    category: EventCategory = EventCategory.OTHER
    notification_enabled: bool = True
    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern | None = None

    def to_event(self) -> Event:
        return Event(**self.model_dump())


class ConflictCheckResponse(BaseModel):
    validation: ValidationResult
    conflicts: list[Event] = Field(default_factory=list)


class UpcomingResponse(BaseModel):
    event_id: str
    description: str | None = None
    occurrences: list[datetime]


class Backup(BaseModel):
    version: int
    created_at: datetime
    events: list[Event] = Field(default_factory=list)
