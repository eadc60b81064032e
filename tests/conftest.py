"""Shared test fixtures and configuration."""

from __future__ import annotations

import datetime as dt
import os
from typing import Optional

import pytest
import structlog

os.environ.setdefault("CALBRIDGE_ENV", "test")
os.environ.setdefault("CALBRIDGE_LOG_LEVEL", "WARNING")

from calbridge.config import Settings
from calbridge.modules.calendar.errors import EventNotFoundError
from calbridge.modules.calendar.models import (
    CalendarEvent,
    CreateEventRequest,
    EventPatch,
    Operation,
    ResponseType,
    RetryPolicy,
    SourceId,
)
from calbridge.modules.calendar.providers import CalendarSource


def make_event(
    event_id: str,
    start: dt.datetime,
    end: dt.datetime,
    title: str = "Meeting",
    source: SourceId = SourceId.CLOUD,
    **kwargs,
) -> CalendarEvent:
    """Build a CalendarEvent with sensible defaults."""
    return CalendarEvent(id=event_id, title=title, start=start, end=end, source=source, **kwargs)


class FakeSource(CalendarSource):
    """In-memory calendar source that records every call."""

    def __init__(
        self,
        source: SourceId,
        events: Optional[list[CalendarEvent]] = None,
        capabilities: Optional[frozenset[Operation]] = None,
        list_error: Optional[Exception] = None,
        available: bool = True,
    ) -> None:
        self.source = source
        self.capabilities = capabilities if capabilities is not None else frozenset(Operation)
        self.events = {event.id: event for event in events or []}
        self.list_error = list_error
        self.available = available
        self.errors: dict[str, Exception] = {}
        self.calls: list[tuple] = []
        self._counter = 0

    async def list_events(self, start, end, calendar_id=None) -> list[CalendarEvent]:
        self.calls.append(("list", start, end, calendar_id))
        if self.list_error is not None:
            raise self.list_error
        return [e for e in self.events.values() if e.start < end and e.end > start]

    async def is_available(self) -> bool:
        return self.available

    async def get_event(self, event_id, calendar_id=None) -> CalendarEvent:
        if not self.supports(Operation.GET):
            return await super().get_event(event_id, calendar_id)
        self.calls.append(("get", event_id))
        if event_id not in self.events:
            raise EventNotFoundError(self.source, f"Event {event_id} not found")
        return self.events[event_id]

    async def create_event(self, request: CreateEventRequest) -> CalendarEvent:
        if not self.supports(Operation.CREATE):
            return await super().create_event(request)
        self.calls.append(("create", request))
        if "create" in self.errors:
            raise self.errors["create"]
        self._counter += 1
        event = CalendarEvent(
            id=f"{self.source}-new-{self._counter}",
            title=request.title,
            start=request.start,
            end=request.end,
            is_all_day=request.is_all_day,
            source=self.source,
            event_type=request.event_type,
            recurrence=request.recurrence,
            location=request.location or "",
        )
        self.events[event.id] = event
        return event

    async def update_event(self, event_id, patch: EventPatch, calendar_id=None) -> CalendarEvent:
        if not self.supports(Operation.UPDATE):
            return await super().update_event(event_id, patch, calendar_id)
        self.calls.append(("update", event_id, patch))
        if f"update:{event_id}" in self.errors:
            raise self.errors[f"update:{event_id}"]
        current = self.events.get(event_id) or make_event(
            event_id, dt.datetime(2026, 1, 1, 9), dt.datetime(2026, 1, 1, 10), source=self.source,
        )
        changes = {name: getattr(patch, name) for name in patch.set_fields() if name in CalendarEvent.model_fields}
        updated = current.model_copy(update=changes)
        self.events[event_id] = updated
        return updated

    async def delete_event(self, event_id, calendar_id=None) -> None:
        if not self.supports(Operation.DELETE):
            return await super().delete_event(event_id, calendar_id)
        self.calls.append(("delete", event_id))
        if f"delete:{event_id}" in self.errors:
            raise self.errors[f"delete:{event_id}"]
        self.events.pop(event_id, None)

    async def respond_to_event(self, event_id, response: ResponseType, calendar_id=None) -> None:
        if not self.supports(Operation.RESPOND):
            return await super().respond_to_event(event_id, response, calendar_id)
        self.calls.append(("respond", event_id, response))
        if "respond" in self.errors:
            raise self.errors["respond"]

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


READ_ONLY = frozenset({Operation.LIST})


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo logging configuration applied by a test (e.g. CLI runs bind a temporary stderr)."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def settings() -> Settings:
    """Return test settings with both sources enabled and no retry delay."""
    return Settings(
        _env_file=None,
        calbridge_env="test",
        calbridge_log_level="WARNING",
        os_calendar_enabled=True,
        cloud_calendar_enabled=True,
        calendar_timezone="UTC",
        retry_initial_delay=0,
        retry_max_delay=0,
    )


@pytest.fixture
def no_delay_policy() -> RetryPolicy:
    """Retry policy that never sleeps."""
    return RetryPolicy(max_attempts=3, initial_delay=0, max_delay=0)


@pytest.fixture
def day() -> dt.date:
    """A Thursday."""
    return dt.date(2026, 1, 15)


@pytest.fixture
def at(day):
    """Build a naive datetime on the fixture day."""

    def _at(hour: int, minute: int = 0, days: int = 0) -> dt.datetime:
        return dt.datetime.combine(day + dt.timedelta(days=days), dt.time(hour, minute))

    return _at

