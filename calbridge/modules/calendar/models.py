"""Data models for calendar events, sources and availability results."""

from __future__ import annotations

import datetime as dt
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class SourceId(StrEnum):
    """Calendar backends reconciled by the coordinator."""

    OS = "os"
    CLOUD = "cloud"


class Operation(StrEnum):
    """Operations a calendar source may or may not support."""

    LIST = "list"
    GET = "get"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESPOND = "respond"
    FREEBUSY = "freebusy"
    LIST_CALENDARS = "list_calendars"


class EventType(StrEnum):
    """Google-style event classification. Missing means DEFAULT."""

    DEFAULT = "default"
    OUT_OF_OFFICE = "outOfOffice"
    FOCUS_TIME = "focusTime"
    WORKING_LOCATION = "workingLocation"
    BIRTHDAY = "birthday"
    FROM_GMAIL = "fromGmail"


class RecurrenceScope(StrEnum):
    """Which part of a recurring series a mutation applies to."""

    THIS_EVENT = "thisEvent"
    THIS_AND_FUTURE = "thisAndFuture"
    ALL_EVENTS = "allEvents"


class WorkingLocationType(StrEnum):
    """Where the user works from on a given day."""

    HOME_OFFICE = "homeOffice"
    OFFICE_LOCATION = "officeLocation"
    CUSTOM_LOCATION = "customLocation"
    UNKNOWN = "unknown"


class PreferredLocation(StrEnum):
    """Location preference for slot ordering."""

    HOME_OFFICE = "homeOffice"
    OFFICE_LOCATION = "officeLocation"
    ANY = "any"


class Suitability(StrEnum):
    """How good a free slot is for focused work."""

    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"


class DayType(StrEnum):
    """Working cadence classification of a weekday."""

    DEEP_WORK = "deep-work"
    MEETING_HEAVY = "meeting-heavy"
    NORMAL = "normal"


class ResponseType(StrEnum):
    """Invitation responses accepted by the coordinator."""

    ACCEPT = "accept"
    DECLINE = "decline"
    TENTATIVE = "tentative"


class Attendee(BaseModel):
    """Event attendee."""

    email: str
    name: str = ""
    status: str = "needsAction"


class ReminderOverride(BaseModel):
    """One explicit reminder."""

    method: str = "popup"
    minutes: int


class Reminders(BaseModel):
    """Reminder configuration of an event."""

    use_default: bool = True
    overrides: list[ReminderOverride] = Field(default_factory=list)


class CalendarEvent(BaseModel):
    """Unified calendar event model across all sources."""

    id: str
    title: str = ""
    start: dt.datetime
    end: dt.datetime
    is_all_day: bool = False
    source: SourceId
    event_type: EventType = EventType.DEFAULT
    ical_uid: Optional[str] = None
    calendar: str = ""
    location: str = ""
    description: str = ""
    attendees: list[Attendee] = Field(default_factory=list)
    organizer: str = ""
    status: str = "confirmed"
    recurring_event_id: Optional[str] = None
    original_start: Optional[dt.datetime] = None
    recurrence: list[str] = Field(default_factory=list)
    reminders: Optional[Reminders] = None
    type_properties: dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_type", mode="before")
    @classmethod
    def _default_event_type(cls, value: Any) -> Any:
        return value or EventType.DEFAULT

    @model_validator(mode="after")
    def _check_order(self) -> CalendarEvent:
        if self.start > self.end:
            raise ValueError("event start must not be after its end")
        return self

    @property
    def duration_minutes(self) -> int:
        """Event duration in minutes."""
        return int((self.end - self.start).total_seconds() // 60)

    @property
    def is_occurrence(self) -> bool:
        """True for a single instance of a recurring series."""
        return bool(self.recurring_event_id)

    @property
    def is_series_parent(self) -> bool:
        """True for the recurring definition itself."""
        return bool(self.recurrence)


class BusyPeriod(BaseModel):
    """Half-open busy interval reported by a backend."""

    start: dt.datetime
    end: dt.datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


class WorkingLocationInfo(BaseModel):
    """Working location annotation attached to a slot."""

    type: WorkingLocationType = WorkingLocationType.UNKNOWN
    label: Optional[str] = None


class AvailableSlot(BaseModel):
    """A scored free slot for one user. Derived, never persisted."""

    start: dt.datetime
    end: dt.datetime
    duration_minutes: int
    suitability: Suitability = Suitability.GOOD
    day_type: DayType = DayType.NORMAL
    reason: str = ""
    conflicts: list[str] = Field(default_factory=list)
    source: Optional[SourceId] = None
    working_location: Optional[WorkingLocationInfo] = None


class CommonFreeSlot(BaseModel):
    """Time when every participant is free."""

    start: dt.datetime
    end: dt.datetime
    duration_minutes: int


class ParticipantAvailability(BaseModel):
    """Free/busy answer for one identity."""

    identity: str
    busy: list[BusyPeriod] = Field(default_factory=list)
    error: Optional[str] = None


class CommonAvailabilityResult(BaseModel):
    """Shared free slots plus per-participant status."""

    common_slots: list[CommonFreeSlot] = Field(default_factory=list)
    participants: list[ParticipantAvailability] = Field(default_factory=list)
    window_start: dt.datetime
    window_end: dt.datetime


class WorkingHours(BaseModel):
    """Daily working window as HH:MM strings."""

    start: str = "09:00"
    end: str = "18:00"

    @field_validator("start", "end")
    @classmethod
    def _valid_clock(cls, value: str) -> str:
        dt.datetime.strptime(value, "%H:%M")
        return value

    @model_validator(mode="after")
    def _check_order(self) -> WorkingHours:
        if self.start_time >= self.end_time:
            raise ValueError("working hours must start before they end")
        return self

    @property
    def start_time(self) -> dt.time:
        return dt.datetime.strptime(self.start, "%H:%M").time()

    @property
    def end_time(self) -> dt.time:
        return dt.datetime.strptime(self.end, "%H:%M").time()


class FindSlotsRequest(BaseModel):
    """Parameters for a single-user free slot search."""

    start: dt.datetime
    end: dt.datetime
    min_duration_minutes: int = Field(default=25, ge=1)
    max_duration_minutes: int = Field(default=480, ge=1)
    working_hours: Optional[WorkingHours] = None
    preferred_working_location: Optional[PreferredLocation] = None
    respect_blocking_event_types: bool = True

    @model_validator(mode="after")
    def _check_bounds(self) -> FindSlotsRequest:
        if self.start > self.end:
            raise ValueError("search window start must not be after its end")
        if self.min_duration_minutes > self.max_duration_minutes:
            raise ValueError("min_duration_minutes exceeds max_duration_minutes")
        return self


class CreateEventRequest(BaseModel):
    """Fields for a new event."""

    title: str
    start: dt.datetime
    end: dt.datetime
    is_all_day: bool = False
    location: Optional[str] = None
    description: Optional[str] = None
    attendees: list[str] = Field(default_factory=list)
    reminders: Optional[Reminders] = None
    event_type: EventType = EventType.DEFAULT
    type_properties: dict[str, Any] = Field(default_factory=dict)
    recurrence: list[str] = Field(default_factory=list)
    calendar_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_request(self) -> CreateEventRequest:
        if self.start > self.end:
            raise ValueError("event start must not be after its end")
        if self.event_type == EventType.FROM_GMAIL:
            raise ValueError("fromGmail events are read-only and cannot be created")
        return self


class EventPatch(BaseModel):
    """Partial update. Only fields explicitly set are sent to the backend."""

    title: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    start: Optional[dt.datetime] = None
    end: Optional[dt.datetime] = None
    is_all_day: Optional[bool] = None
    attendees: Optional[list[str]] = None
    reminders: Optional[Reminders] = None
    event_type: Optional[EventType] = None
    out_of_office_properties: Optional[dict[str, Any]] = None
    focus_time_properties: Optional[dict[str, Any]] = None
    working_location_properties: Optional[dict[str, Any]] = None
    birthday_properties: Optional[dict[str, Any]] = None
    recurrence: Optional[list[str]] = None

    def set_fields(self) -> list[str]:
        """Names of fields carrying a value, in declaration order."""
        return [name for name in type(self).model_fields if getattr(self, name) is not None]


class CalendarInfo(BaseModel):
    """A calendar exposed by a source."""

    id: str
    name: str
    source: SourceId
    is_primary: bool = False
    color: Optional[str] = None
    access_role: Optional[str] = None


class RespondResult(BaseModel):
    """Outcome of an invitation response."""

    success: bool
    message: str
    source: Optional[SourceId] = None


class SourceStatus(BaseModel):
    """Per-source boolean status (availability or health)."""

    os: bool = False
    cloud: bool = False


class RetryPolicy(BaseModel):
    """Backoff settings for outbound backend calls."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
