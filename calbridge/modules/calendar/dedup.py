"""Cross-source event deduplication.

Policy: the first copy of a logical event wins. Callers pass events in
source-registration order, so that order decides which backend's metadata
(calendar name, location, event type) the user sees. Fields are never merged.
"""

from __future__ import annotations

from calbridge.modules.calendar.models import CalendarEvent


def is_duplicate(first: CalendarEvent, second: CalendarEvent) -> bool:
    """Decide whether two events are copies of the same logical event.

    A shared iCalUID is authoritative. Without one on both sides, fall back to
    case-insensitive title plus identical start and end.
    """
    if first.ical_uid and second.ical_uid and first.ical_uid == second.ical_uid:
        return True
    return (
        first.title.lower() == second.title.lower()
        and first.start == second.start
        and first.end == second.end
    )


def deduplicate_events(events: list[CalendarEvent]) -> list[CalendarEvent]:
    """Drop every event that duplicates an earlier kept one, preserving order."""
    kept: list[CalendarEvent] = []
    for event in events:
        if not any(is_duplicate(previous, event) for previous in kept):
            kept.append(event)
    return kept
