"""Calendar source coordinator: one interface over every enabled backend.

Reads fan out to all enabled sources and are deduplicated. Mutations go to
one source, through the recurrence resolver when the target is recurring.
Availability questions are answered from a fresh snapshot on every call;
nothing is cached.
"""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import Optional, Sequence

from calbridge.config import Settings, get_settings
from calbridge.logging_config import get_logger
from calbridge.modules.calendar.availability import AvailabilityEngine
from calbridge.modules.calendar.common import CommonAvailabilityCalculator
from calbridge.modules.calendar.dedup import deduplicate_events
from calbridge.modules.calendar.errors import ConfigurationError, RecurrenceError
from calbridge.modules.calendar.fallback import FallbackCoordinator
from calbridge.modules.calendar.models import (
    AvailableSlot,
    CalendarEvent,
    CalendarInfo,
    CommonAvailabilityResult,
    CreateEventRequest,
    EventPatch,
    FindSlotsRequest,
    Operation,
    ParticipantAvailability,
    RecurrenceScope,
    RespondResult,
    ResponseType,
    SourceId,
    SourceStatus,
)
from calbridge.modules.calendar.providers import (
    AppleCalendarSource,
    CalendarSource,
    GoogleCalendarSource,
)
from calbridge.modules.calendar.recurrence import RecurrenceScopeResolver, validate_patch_fields
from calbridge.modules.calendar.rrule import describe_recurrence, validate_recurrence_rules

logger = get_logger(__name__)

_RESPONSE_WORDS = {
    ResponseType.ACCEPT: "accepted",
    ResponseType.DECLINE: "declined",
    ResponseType.TENTATIVE: "tentatively accepted",
}


class CalendarSourceCoordinator:
    """Unified calendar access across the OS and cloud calendar sources."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        sources: Optional[dict[SourceId, CalendarSource]] = None,
        enabled: Optional[Sequence[SourceId]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._sources = sources if sources is not None else self._build_sources()
        self._enabled: list[SourceId] = list(enabled) if enabled is not None else self._settings.enabled_sources()
        self._fallback = FallbackCoordinator(self._sources, self.get_enabled_sources)
        self._availability = AvailabilityEngine(
            deep_work_days=self._settings.deep_work_day_list,
            meeting_heavy_days=self._settings.meeting_heavy_day_list,
            timezone=self._settings.calendar_timezone,
            default_working_hours=self._settings.working_hours,
        )
        self._common = CommonAvailabilityCalculator(
            self._query_free_busy, timezone=self._settings.calendar_timezone,
        )

    def _build_sources(self) -> dict[SourceId, CalendarSource]:
        policy = self._settings.retry_policy
        return {
            SourceId.OS: AppleCalendarSource(
                timeout=self._settings.osascript_timeout,
                retry_policy=policy,
            ),
            SourceId.CLOUD: GoogleCalendarSource(
                credentials_file=self._settings.google_credentials_file,
                token_file=self._settings.google_token_file,
                default_calendar=self._settings.google_default_calendar,
                timezone=self._settings.calendar_timezone,
                retry_policy=policy,
                freebusy_batch_size=self._settings.freebusy_batch_size,
            ),
        }

    # ── Source management ───────────────────────────────────────────

    def get_enabled_sources(self) -> list[SourceId]:
        """Enabled sources in registration order (OS before cloud)."""
        return [source_id for source_id in SourceId if source_id in self._enabled]

    def enable_source(self, source: SourceId) -> None:
        if source not in self._enabled:
            self._enabled.append(source)
        logger.info("calendar_source_enabled", source=source)

    def disable_source(self, source: SourceId) -> None:
        """Disable a source, refusing to leave none enabled."""
        remaining = [s for s in self._enabled if s != source]
        if not remaining:
            raise ConfigurationError("Cannot disable source: at least one calendar source must be enabled")
        self._enabled = remaining
        logger.info("calendar_source_disabled", source=source)

    async def _probe(self, check: str) -> SourceStatus:
        async def _one(source_id: SourceId) -> bool:
            source = self._sources.get(source_id)
            if source is None:
                return False
            try:
                return await source.is_available()
            except Exception as exc:
                logger.error(f"source_{check}_failed", source=source_id, error=str(exc))
                return False

        os_ok, cloud_ok = await asyncio.gather(_one(SourceId.OS), _one(SourceId.CLOUD))
        return SourceStatus(os=os_ok, cloud=cloud_ok)

    async def detect_available_sources(self) -> SourceStatus:
        """Which backends could be used on this machine, enabled or not."""
        return await self._probe("detection")

    async def health_check(self) -> SourceStatus:
        """Current health of each backend. Never raises."""
        status = await self._probe("health_check")
        logger.info("calendar_health_check", os=status.os, cloud=status.cloud)
        return status

    def _mutation_source(self, operation: Operation) -> CalendarSource:
        for source in self._fallback.active_sources():
            if source.supports(operation):
                return source
        raise ConfigurationError(f"No enabled calendar source supports {operation}")

    # ── Reads ────────────────────────────────────────────────────────

    async def get_events(
        self, start: dt.datetime, end: dt.datetime, calendar_id: Optional[str] = None,
    ) -> list[CalendarEvent]:
        """Events from every enabled source, deduplicated (first copy wins)."""
        events = await self._fallback.read_all(
            "list events", lambda source: source.list_events(start, end, calendar_id),
        )
        unique = deduplicate_events(events)
        logger.info("events_fetched", total=len(events), unique=len(unique))
        return unique

    async def list_calendars(self) -> list[CalendarInfo]:
        return await self._fallback.run_on(
            SourceId.CLOUD, "list calendars", lambda source: source.list_calendars(),
        )

    async def find_available_slots(self, request: FindSlotsRequest) -> list[AvailableSlot]:
        """Scored free slots for the user over the request window."""
        events = await self.get_events(request.start, request.end)
        return self._availability.find_available_slots(events, request)

    async def _query_free_busy(
        self, identities: list[str], start: dt.datetime, end: dt.datetime,
    ) -> dict[str, ParticipantAvailability]:
        return await self._fallback.run_on(
            SourceId.CLOUD,
            "query free/busy",
            lambda source: source.query_free_busy(identities, start, end),
        )

    async def find_common_availability(
        self,
        identities: list[str],
        start: dt.datetime,
        end: dt.datetime,
        min_duration_minutes: int = 30,
    ) -> CommonAvailabilityResult:
        """Slots where everyone whose free/busy could be read is free."""
        return await self._common.find_common_availability(identities, start, end, min_duration_minutes)

    # ── Mutations ────────────────────────────────────────────────────

    async def create_event(
        self, request: CreateEventRequest, preferred_source: Optional[SourceId] = None,
    ) -> CalendarEvent:
        """Create in the preferred source, falling back through the others.

        Recurring events can only be created in the cloud calendar, so a
        request with recurrence rules ignores ``preferred_source``.
        """
        if request.recurrence:
            errors = validate_recurrence_rules(request.recurrence)
            if errors:
                raise RecurrenceError(f"Invalid recurrence rules: {'; '.join(errors)}")
            if SourceId.CLOUD not in self.get_enabled_sources():
                raise ConfigurationError("Recurring events require the cloud calendar source to be enabled")
            status = await self._probe("recurrence_check")
            if not status.cloud:
                raise ConfigurationError("Recurring events require an authenticated cloud calendar")
            logger.info(
                "recurrence_forces_cloud_source",
                title=request.title,
                recurrence=describe_recurrence(request.recurrence),
            )
            return await self._fallback.run_on(
                SourceId.CLOUD, "create event", lambda source: source.create_event(request),
            )

        used, event = await self._fallback.first_success(
            "create event", lambda source: source.create_event(request), preferred=preferred_source,
        )
        logger.info("event_created", source=used, event_id=event.id)
        return event

    async def update_event(
        self,
        event_id: str,
        patch: EventPatch,
        scope: Optional[RecurrenceScope] = None,
        calendar_id: Optional[str] = None,
    ) -> CalendarEvent:
        """Patch an event, honouring event-type restrictions and recurrence scope."""
        target = self._mutation_source(Operation.UPDATE)
        event = await self._fallback.run_on(
            target.source, "get event", lambda source: source.get_event(event_id, calendar_id),
        )
        validate_patch_fields(event.event_type, patch)
        return await self._fallback.run_on(
            target.source,
            "update event",
            lambda source: RecurrenceScopeResolver(source).update(event, patch, scope, calendar_id),
        )

    async def delete_event(
        self,
        event_id: str,
        source: Optional[SourceId] = None,
        scope: Optional[RecurrenceScope] = None,
        calendar_id: Optional[str] = None,
    ) -> None:
        """Delete an event.

        With neither ``source`` nor ``scope`` the id is deleted from every
        enabled source that can delete; "not found" counts as done. Without a
        scope the default resolution always targets the given id itself.
        """
        if source is None and scope is None:
            deleted = await self._fallback.delete_everywhere(
                lambda s: s.delete_event(event_id, calendar_id),
            )
            logger.info("event_deleted", event_id=event_id, sources=deleted)
            return

        async def _scoped_delete(target: CalendarSource) -> None:
            if scope is None:
                await target.delete_event(event_id, calendar_id)
                return
            event = await target.get_event(event_id, calendar_id)
            await RecurrenceScopeResolver(target).delete(event, scope, calendar_id)

        target_id = source or self._mutation_source(Operation.DELETE).source
        await self._fallback.run_on(target_id, "delete event", _scoped_delete)
        logger.info("event_deleted", event_id=event_id, sources=[target_id], scope=scope)

    async def respond_to_event(
        self,
        event_id: str,
        response: ResponseType,
        source: Optional[SourceId] = None,
        calendar_id: Optional[str] = None,
    ) -> RespondResult:
        """Accept, decline or tentatively accept an invitation."""
        response = ResponseType(response)

        async def _respond(target: CalendarSource) -> None:
            await target.respond_to_event(event_id, response, calendar_id)

        if source is not None:
            await self._fallback.run_on(source, "respond to event", _respond)
            used = source
        else:
            used, _ = await self._fallback.first_success("respond to event", _respond)

        logger.info("event_responded", event_id=event_id, response=response, source=used)
        return RespondResult(
            success=True,
            message=f"Event {_RESPONSE_WORDS[response]} in {used} calendar",
            source=used,
        )
