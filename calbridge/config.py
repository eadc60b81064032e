"""Centralized configuration loaded from environment variables."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from calbridge.modules.calendar.models import RetryPolicy, SourceId, WorkingHours


class Settings(BaseSettings):
    """Application-wide settings sourced from .env / environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────────────
    calbridge_env: str = "development"
    calbridge_log_level: str = "INFO"

    # ── Sources ──────────────────────────────────────────────────────
    # None on both means "pick by platform"
    os_calendar_enabled: Optional[bool] = None
    cloud_calendar_enabled: Optional[bool] = None

    # ── Google Calendar ──────────────────────────────────────────────
    google_credentials_file: str = "config/google_credentials.json"
    google_token_file: str = "config/google_token.json"
    google_default_calendar: str = "primary"

    # ── Scheduling ───────────────────────────────────────────────────
    calendar_timezone: str = "UTC"
    working_hours_start: str = "09:00"
    working_hours_end: str = "18:00"
    deep_work_days: str = ""
    meeting_heavy_days: str = ""

    # ── Backend calls ────────────────────────────────────────────────
    retry_max_attempts: int = 3
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_multiplier: float = 2.0
    freebusy_batch_size: int = 50
    osascript_timeout: int = 30

    @field_validator("retry_max_attempts", "freebusy_batch_size")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    # ── Derived ──────────────────────────────────────────────────────
    @property
    def working_hours(self) -> WorkingHours:
        """Default working hours for slot searches."""
        from calbridge.modules.calendar.models import WorkingHours

        return WorkingHours(start=self.working_hours_start, end=self.working_hours_end)

    @property
    def retry_policy(self) -> RetryPolicy:
        """Retry policy applied to every outbound backend call."""
        from calbridge.modules.calendar.models import RetryPolicy

        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
            multiplier=self.retry_multiplier,
        )

    @property
    def deep_work_day_list(self) -> list[str]:
        """Parse comma-separated deep-work weekday names."""
        return _split_days(self.deep_work_days)

    @property
    def meeting_heavy_day_list(self) -> list[str]:
        """Parse comma-separated meeting-heavy weekday names."""
        return _split_days(self.meeting_heavy_days)

    def enabled_sources(self) -> list[SourceId]:
        """Sources switched on, in registration order (OS first)."""
        from calbridge.modules.calendar.models import SourceId

        if self.os_calendar_enabled is None and self.cloud_calendar_enabled is None:
            return [SourceId.OS] if sys.platform == "darwin" else [SourceId.CLOUD]
        sources: list[SourceId] = []
        if self.os_calendar_enabled:
            sources.append(SourceId.OS)
        if self.cloud_calendar_enabled:
            sources.append(SourceId.CLOUD)
        return sources


def _split_days(raw: str) -> list[str]:
    return [day.strip().capitalize() for day in raw.split(",") if day.strip()]


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
