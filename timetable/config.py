"""Runtime settings, read from ``TIMETABLE_*`` environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

try:
    from enum import StrEnum
except ImportError:  # pragma: no cover - fallback for older Python runtimes
    from enum import Enum

    class StrEnum(str, Enum):
        pass


class EndDateBasis(StrEnum):
    """What a recurrence ``end_date`` must lie after to be accepted."""

    NOW = "now"
    EVENT_START = "event_start"


class Settings(BaseSettings):
    # Hard stop for materializing one base event over a window.
    max_expansion_iterations: int = Field(default=1000, ge=1)
    upcoming_default_count: int = Field(default=5, ge=1)
    end_date_basis: EndDateBasis = EndDateBasis.NOW

    backup_version: int = 1

    log_level: str = "INFO"
    log_file: str | None = None

    model_config = SettingsConfigDict(
        env_prefix="TIMETABLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
