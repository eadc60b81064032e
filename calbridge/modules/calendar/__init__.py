"""Multi-source calendar reconciliation and availability."""

from calbridge.modules.calendar.errors import (
    AggregateFailure,
    CalendarError,
    ConfigurationError,
    FieldRestrictionViolation,
    RecurrenceError,
)
from calbridge.modules.calendar.models import (
    AvailableSlot,
    CalendarEvent,
    CreateEventRequest,
    EventPatch,
    FindSlotsRequest,
    RecurrenceScope,
    SourceId,
)
from calbridge.modules.calendar.service import CalendarSourceCoordinator

__all__ = [
    "AggregateFailure",
    "AvailableSlot",
    "CalendarError",
    "CalendarEvent",
    "CalendarSourceCoordinator",
    "ConfigurationError",
    "CreateEventRequest",
    "EventPatch",
    "FieldRestrictionViolation",
    "FindSlotsRequest",
    "RecurrenceError",
    "RecurrenceScope",
    "SourceId",
]
