"""Free-slot search for a single user.

Events are normalized to naive wall-clock time in the configured zone before
any bucketing, so a day always means a local calendar day and working hours
are local working hours.
"""

from __future__ import annotations

import datetime as dt
import math
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from calbridge.logging_config import get_logger
from calbridge.modules.calendar.models import (
    AvailableSlot,
    CalendarEvent,
    DayType,
    EventType,
    FindSlotsRequest,
    PreferredLocation,
    Suitability,
    WorkingHours,
    WorkingLocationInfo,
    WorkingLocationType,
)

logger = get_logger(__name__)

BLOCKING_EVENT_TYPES = frozenset({EventType.DEFAULT, EventType.OUT_OF_OFFICE, EventType.FOCUS_TIME})
LEGACY_NON_BLOCKING_TYPES = frozenset({EventType.BIRTHDAY, EventType.FROM_GMAIL})

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

SUITABILITY_RANK = {
    Suitability.EXCELLENT: 0,
    Suitability.GOOD: 1,
    Suitability.ACCEPTABLE: 2,
}

SHORT_SLOT_MINUTES = 25
MORNING_SLOT_MINUTES = 60
EXTENDED_SLOT_MINUTES = 240


def to_local(value: dt.datetime, tz: dt.tzinfo) -> dt.datetime:
    """Naive wall-clock time in ``tz``. Naive input is taken as already local."""
    if value.tzinfo is None:
        return value
    return value.astimezone(tz).replace(tzinfo=None)


def localize_event(event: CalendarEvent, tz: dt.tzinfo) -> CalendarEvent:
    return event.model_copy(update={"start": to_local(event.start, tz), "end": to_local(event.end, tz)})


def filter_blocking_events(events: Iterable[CalendarEvent], respect_types: bool = True) -> list[CalendarEvent]:
    """Keep the events that occupy time.

    With ``respect_types`` only default, out-of-office and focus-time events
    block. Without it, everything except birthdays and Gmail-derived events
    blocks, which is how older callers expect working-location events to act.
    """
    if respect_types:
        return [e for e in events if e.event_type in BLOCKING_EVENT_TYPES]
    return [e for e in events if e.event_type not in LEGACY_NON_BLOCKING_TYPES]


def iter_days(start: dt.datetime, end: dt.datetime) -> list[dt.date]:
    """Calendar days touched by ``[start, end)``."""
    last = end.date()
    if end.time() == dt.time.min and end > start:
        last -= dt.timedelta(days=1)
    days = []
    day = start.date()
    while day <= last:
        days.append(day)
        day += dt.timedelta(days=1)
    return days


def _make_slot(start: dt.datetime, gap_end: dt.datetime) -> AvailableSlot:
    minutes = math.floor((gap_end - start).total_seconds() / 60)
    return AvailableSlot(
        start=start,
        end=start + dt.timedelta(minutes=minutes),
        duration_minutes=minutes,
        reason=f"{minutes} minute free slot",
    )


def find_day_slots(
    work_start: dt.datetime,
    work_end: dt.datetime,
    blocking: Sequence[CalendarEvent],
    min_minutes: int,
    max_minutes: int,
) -> list[AvailableSlot]:
    """Gaps between blocking events inside one day's working window."""
    if any(e.is_all_day and e.start <= work_start and e.end >= work_end for e in blocking):
        return []

    day_events = sorted(
        (e for e in blocking if not e.is_all_day and e.start < work_end and e.end > work_start),
        key=lambda e: e.start,
    )

    def fits(start: dt.datetime, end: dt.datetime) -> bool:
        minutes = (end - start).total_seconds() / 60
        return min_minutes <= minutes <= max_minutes

    slots: list[AvailableSlot] = []
    current = work_start
    for event in day_events:
        gap_end = min(max(event.start, work_start), work_end)
        if fits(current, gap_end):
            slots.append(_make_slot(current, gap_end))
        current = max(current, min(event.end, work_end))

    if fits(current, work_end):
        slots.append(_make_slot(current, work_end))
    return slots


def annotate_working_location(
    slots: list[AvailableSlot], events: Iterable[CalendarEvent],
) -> list[AvailableSlot]:
    """Attach the working location declared for each slot's day."""
    by_day: dict[dt.date, CalendarEvent] = {}
    for event in events:
        if event.event_type == EventType.WORKING_LOCATION:
            by_day.setdefault(event.start.date(), event)

    annotated = []
    for slot in slots:
        event = by_day.get(slot.start.date())
        info = _working_location_info(event) if event else WorkingLocationInfo()
        annotated.append(slot.model_copy(update={"working_location": info}))
    return annotated


def _working_location_info(event: CalendarEvent) -> WorkingLocationInfo:
    props = event.type_properties
    raw_type = props.get("type")
    if not raw_type:
        return WorkingLocationInfo()
    try:
        location_type = WorkingLocationType(raw_type)
    except ValueError:
        location_type = WorkingLocationType.UNKNOWN
    label = (props.get("customLocation") or {}).get("label") or (props.get("officeLocation") or {}).get("label")
    return WorkingLocationInfo(type=location_type, label=label)


def prefer_location(
    slots: list[AvailableSlot], preferred: Optional[PreferredLocation],
) -> list[AvailableSlot]:
    """Stable partition: slots at the preferred location first."""
    if preferred is None or preferred == PreferredLocation.ANY:
        return slots

    def matches(slot: AvailableSlot) -> bool:
        return slot.working_location is not None and slot.working_location.type == preferred.value

    return [s for s in slots if matches(s)] + [s for s in slots if not matches(s)]


def rank_slots(slots: list[AvailableSlot]) -> list[AvailableSlot]:
    """Best suitability first, then earliest. Stable, so earlier orderings break ties."""
    return sorted(slots, key=lambda s: (SUITABILITY_RANK[s.suitability], s.start))


class AvailabilityEngine:
    """Turns an event snapshot into scored, annotated free slots."""

    def __init__(
        self,
        deep_work_days: Sequence[str] = (),
        meeting_heavy_days: Sequence[str] = (),
        timezone: str = "UTC",
        default_working_hours: Optional[WorkingHours] = None,
    ) -> None:
        self._deep_work_days = set(deep_work_days)
        self._meeting_heavy_days = set(meeting_heavy_days)
        self._tz = ZoneInfo(timezone)
        self._default_working_hours = default_working_hours or WorkingHours()

    def score_slot(self, slot: AvailableSlot) -> AvailableSlot:
        """Apply the suitability rules in order; a later rule's reason wins."""
        day = WEEKDAY_NAMES[slot.start.weekday()]
        minutes = slot.duration_minutes
        reason = slot.reason

        if day in self._deep_work_days:
            day_type, suitability = DayType.DEEP_WORK, Suitability.EXCELLENT
            reason = f"{day} is a deep work day, excellent for focused tasks"
        elif day in self._meeting_heavy_days:
            day_type, suitability = DayType.MEETING_HEAVY, Suitability.ACCEPTABLE
            reason = f"{day} is a meeting-heavy day, consider another day for deep work"
        else:
            day_type, suitability = DayType.NORMAL, Suitability.GOOD

        if slot.start.hour < 12 and minutes >= MORNING_SLOT_MINUTES and suitability == Suitability.GOOD:
            suitability = Suitability.EXCELLENT
            reason = f"Morning slot with {minutes} minutes, ideal for deep work"

        if minutes < SHORT_SLOT_MINUTES:
            if suitability == Suitability.EXCELLENT:
                suitability = Suitability.GOOD
            elif suitability == Suitability.GOOD:
                suitability = Suitability.ACCEPTABLE
            reason = f"Short slot ({minutes} minutes), best for quick tasks"

        if minutes > EXTENDED_SLOT_MINUTES and day_type == DayType.DEEP_WORK:
            suitability = Suitability.EXCELLENT
            reason = f"Extended {minutes} minute slot on {day}, perfect for deep work"

        return slot.model_copy(update={"suitability": suitability, "day_type": day_type, "reason": reason})

    def find_available_slots(
        self, events: Sequence[CalendarEvent], request: FindSlotsRequest,
    ) -> list[AvailableSlot]:
        """Free slots in the request window, ranked for the caller."""
        local_events = [localize_event(e, self._tz) for e in events]
        window_start = to_local(request.start, self._tz)
        window_end = to_local(request.end, self._tz)
        hours = request.working_hours or self._default_working_hours
        blocking = filter_blocking_events(local_events, request.respect_blocking_event_types)

        slots: list[AvailableSlot] = []
        for day in iter_days(window_start, window_end):
            work_start = max(dt.datetime.combine(day, hours.start_time), window_start)
            work_end = min(dt.datetime.combine(day, hours.end_time), window_end)
            if work_start >= work_end:
                continue
            slots.extend(find_day_slots(
                work_start, work_end, blocking,
                request.min_duration_minutes, request.max_duration_minutes,
            ))

        slots = [self.score_slot(slot) for slot in slots]
        slots = annotate_working_location(slots, local_events)
        slots = prefer_location(slots, request.preferred_working_location)
        ranked = rank_slots(slots)
        logger.info(
            "available_slots_found",
            events=len(events),
            blocking=len(blocking),
            slots=len(ranked),
        )
        return ranked
