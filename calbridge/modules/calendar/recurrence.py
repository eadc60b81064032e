"""Scope resolution and execution for updates and deletes on recurring events.

An occurrence edited without an explicit scope changes only itself; a series
parent edited without one changes the whole series. "This and future" splits
the series: the parent is truncated with UNTIL the day before the selected
occurrence and, for updates, a new unbounded series starts at that occurrence.
"""

from __future__ import annotations

import datetime as dt
from typing import Optional

from calbridge.logging_config import get_logger
from calbridge.modules.calendar.errors import CalendarError, FieldRestrictionViolation, RecurrenceError
from calbridge.modules.calendar.models import (
    CalendarEvent,
    CreateEventRequest,
    EventPatch,
    EventType,
    RecurrenceScope,
)
from calbridge.modules.calendar.providers import CalendarSource
from calbridge.modules.calendar.rrule import split_until, truncate_recurrence, unbounded_recurrence

logger = get_logger(__name__)

FULL_UPDATE_FIELDS: tuple[str, ...] = tuple(EventPatch.model_fields)

ALLOWED_UPDATE_FIELDS: dict[EventType, tuple[str, ...]] = {
    EventType.BIRTHDAY: ("title", "reminders", "start", "end", "is_all_day"),
    EventType.FROM_GMAIL: ("reminders", "attendees"),
}


def allowed_update_fields(event_type: EventType) -> tuple[str, ...]:
    return ALLOWED_UPDATE_FIELDS.get(event_type, FULL_UPDATE_FIELDS)


def validate_patch_fields(event_type: EventType, patch: EventPatch) -> None:
    """Raise FieldRestrictionViolation if the patch sets fields the type forbids."""
    allowed = allowed_update_fields(event_type)
    disallowed = [name for name in patch.set_fields() if name not in allowed]
    if disallowed:
        raise FieldRestrictionViolation(event_type.value, disallowed, list(allowed))


def resolve_scope(
    event: CalendarEvent, requested: Optional[RecurrenceScope] = None,
) -> Optional[RecurrenceScope]:
    """Effective scope for a mutation; None means the event is not recurring."""
    if requested is not None:
        return requested
    if event.is_occurrence:
        return RecurrenceScope.THIS_EVENT
    if event.is_series_parent:
        return RecurrenceScope.ALL_EVENTS
    return None


def series_id(event: CalendarEvent) -> str:
    """Id of the series an event belongs to (its own id for a parent)."""
    return event.recurring_event_id or event.id


def occurrence_start(event: CalendarEvent) -> dt.datetime:
    return event.original_start or event.start


class RecurrenceScopeResolver:
    """Executes scoped mutations against one source that supports them."""

    def __init__(self, source: CalendarSource) -> None:
        self._source = source

    async def _load_series(self, event: CalendarEvent, calendar_id: Optional[str]) -> CalendarEvent:
        parent = event
        if event.is_occurrence:
            parent = await self._source.get_event(series_id(event), calendar_id)
        if not parent.recurrence:
            raise RecurrenceError(f"Event {parent.id} is not a recurring series")
        return parent

    def _splits_at_head(self, event: CalendarEvent, parent: CalendarEvent) -> bool:
        """Splitting at or before the first occurrence leaves nothing to keep."""
        return event.id == parent.id or occurrence_start(event).date() <= parent.start.date()

    async def _truncate(
        self, parent: CalendarEvent, event: CalendarEvent, calendar_id: Optional[str],
    ) -> str:
        until = split_until(occurrence_start(event))
        truncated = truncate_recurrence(parent.recurrence, until)
        await self._source.update_event(parent.id, EventPatch(recurrence=truncated), calendar_id)
        logger.info("recurring_series_truncated", series_id=parent.id, until=until)
        return until

    async def update(
        self,
        event: CalendarEvent,
        patch: EventPatch,
        scope: Optional[RecurrenceScope] = None,
        calendar_id: Optional[str] = None,
    ) -> CalendarEvent:
        effective = resolve_scope(event, scope)
        logger.info("update_scope_resolved", event_id=event.id, scope=effective)

        if effective == RecurrenceScope.THIS_AND_FUTURE:
            parent = await self._load_series(event, calendar_id)
            if self._splits_at_head(event, parent):
                return await self._source.update_event(parent.id, patch, calendar_id)
            return await self._split(event, parent, patch, calendar_id)

        target = series_id(event) if effective == RecurrenceScope.ALL_EVENTS else event.id
        return await self._source.update_event(target, patch, calendar_id)

    async def delete(
        self,
        event: CalendarEvent,
        scope: Optional[RecurrenceScope] = None,
        calendar_id: Optional[str] = None,
    ) -> None:
        effective = resolve_scope(event, scope)
        logger.info("delete_scope_resolved", event_id=event.id, scope=effective)

        if effective == RecurrenceScope.THIS_AND_FUTURE:
            parent = await self._load_series(event, calendar_id)
            if self._splits_at_head(event, parent):
                await self._source.delete_event(parent.id, calendar_id)
            else:
                await self._truncate(parent, event, calendar_id)
            return

        target = series_id(event) if effective == RecurrenceScope.ALL_EVENTS else event.id
        await self._source.delete_event(target, calendar_id)

    async def _split(
        self,
        event: CalendarEvent,
        parent: CalendarEvent,
        patch: EventPatch,
        calendar_id: Optional[str],
    ) -> CalendarEvent:
        await self._truncate(parent, event, calendar_id)

        start = patch.start or occurrence_start(event)
        end = patch.end or start + (parent.end - parent.start)
        request = CreateEventRequest(
            title=patch.title if patch.title is not None else parent.title,
            start=start,
            end=end,
            is_all_day=patch.is_all_day if patch.is_all_day is not None else parent.is_all_day,
            location=patch.location if patch.location is not None else parent.location,
            description=patch.description if patch.description is not None else parent.description,
            attendees=patch.attendees if patch.attendees is not None else [a.email for a in parent.attendees],
            reminders=patch.reminders or parent.reminders,
            event_type=patch.event_type or parent.event_type,
            type_properties=parent.type_properties,
            recurrence=patch.recurrence or unbounded_recurrence(parent.recurrence),
            calendar_id=calendar_id,
        )

        try:
            created = await self._source.create_event(request)
        except CalendarError as exc:
            logger.error("series_split_create_failed", series_id=parent.id, error=str(exc))
            try:
                await self._source.update_event(parent.id, EventPatch(recurrence=parent.recurrence), calendar_id)
            except CalendarError as restore_exc:
                logger.error("series_split_rollback_failed", series_id=parent.id, error=str(restore_exc))
            raise

        logger.info("recurring_series_split", series_id=parent.id, new_series_id=created.id)
        return created
