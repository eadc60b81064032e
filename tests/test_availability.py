"""Tests for single-user free slot search, scoring and ordering."""

from __future__ import annotations

import datetime as dt
from zoneinfo import ZoneInfo

import pytest

from calbridge.modules.calendar.availability import (
    AvailabilityEngine,
    annotate_working_location,
    filter_blocking_events,
    find_day_slots,
    iter_days,
    prefer_location,
    rank_slots,
    to_local,
)
from calbridge.modules.calendar.models import (
    AvailableSlot,
    DayType,
    EventType,
    FindSlotsRequest,
    PreferredLocation,
    Suitability,
    WorkingLocationInfo,
    WorkingLocationType,
)

from conftest import make_event


@pytest.fixture
def engine() -> AvailabilityEngine:
    return AvailabilityEngine()


def _request(at, **kwargs) -> FindSlotsRequest:
    return FindSlotsRequest(start=at(0), end=at(0, days=1), **kwargs)


def _slot(start: dt.datetime, minutes: int, **kwargs) -> AvailableSlot:
    return AvailableSlot(start=start, end=start + dt.timedelta(minutes=minutes), duration_minutes=minutes, **kwargs)


class TestBlockingFilter:
    def test_type_aware_filter(self, at) -> None:
        events = [
            make_event(str(i), at(10), at(11), event_type=event_type)
            for i, event_type in enumerate(EventType)
        ]
        blocking = {e.event_type for e in filter_blocking_events(events)}
        assert blocking == {EventType.DEFAULT, EventType.OUT_OF_OFFICE, EventType.FOCUS_TIME}

    def test_legacy_filter_only_drops_birthdays_and_gmail(self, at) -> None:
        events = [
            make_event(str(i), at(10), at(11), event_type=event_type)
            for i, event_type in enumerate(EventType)
        ]
        blocking = {e.event_type for e in filter_blocking_events(events, respect_types=False)}
        assert EventType.WORKING_LOCATION in blocking
        assert EventType.BIRTHDAY not in blocking
        assert EventType.FROM_GMAIL not in blocking


class TestFindDaySlots:
    def test_gaps_between_events(self, at) -> None:
        events = [make_event("a", at(10), at(11)), make_event("b", at(13), at(14))]
        slots = find_day_slots(at(9), at(18), events, 25, 480)
        assert [(s.start, s.end, s.duration_minutes) for s in slots] == [
            (at(9), at(10), 60),
            (at(11), at(13), 120),
            (at(14), at(18), 240),
        ]

    def test_overlapping_events_do_not_rewind(self, at) -> None:
        events = [make_event("a", at(10), at(12)), make_event("b", at(11), at(11, 30))]
        slots = find_day_slots(at(9), at(18), events, 25, 480)
        assert [(s.start, s.end) for s in slots] == [(at(9), at(10)), (at(12), at(18))]

    def test_event_straddling_work_start(self, at) -> None:
        events = [make_event("a", at(8), at(9, 30))]
        slots = find_day_slots(at(9), at(18), events, 25, 480)
        assert [(s.start, s.end) for s in slots] == [(at(9, 30), at(18))]

    def test_short_gaps_are_dropped(self, at) -> None:
        events = [make_event("a", at(9, 20), at(17))]
        slots = find_day_slots(at(9), at(18), events, 25, 480)
        assert [(s.start, s.end) for s in slots] == [(at(17), at(18))]

    def test_gaps_over_max_are_dropped(self, at) -> None:
        slots = find_day_slots(at(9), at(18), [], 25, 120)
        assert slots == []

    def test_covering_all_day_event_blocks_the_day(self, at) -> None:
        events = [make_event("a", at(0), at(0, days=1), is_all_day=True)]
        assert find_day_slots(at(9), at(18), events, 25, 600) == []

    def test_fractional_minutes_keep_duration_exact(self, at) -> None:
        events = [make_event("a", at(9) + dt.timedelta(minutes=30, seconds=30), at(18))]
        (slot,) = find_day_slots(at(9), at(18), events, 25, 480)
        assert slot.duration_minutes == 30
        assert slot.end - slot.start == dt.timedelta(minutes=30)


class TestScoring:
    def test_normal_day_afternoon_is_good(self, at) -> None:
        scored = AvailabilityEngine().score_slot(_slot(at(14), 90, reason="90 minute free slot"))
        assert scored.suitability == Suitability.GOOD
        assert scored.day_type == DayType.NORMAL
        assert scored.reason == "90 minute free slot"

    def test_morning_upgrade(self, at) -> None:
        scored = AvailabilityEngine().score_slot(_slot(at(9), 60))
        assert scored.suitability == Suitability.EXCELLENT
        assert scored.reason.startswith("Morning slot with 60 minutes")

    def test_deep_work_day(self, at) -> None:
        scored = AvailabilityEngine(deep_work_days=["Thursday"]).score_slot(_slot(at(14), 90))
        assert scored.suitability == Suitability.EXCELLENT
        assert scored.day_type == DayType.DEEP_WORK
        assert "Thursday is a deep work day" in scored.reason

    def test_meeting_heavy_day_morning_is_not_upgraded(self, at) -> None:
        scored = AvailabilityEngine(meeting_heavy_days=["Thursday"]).score_slot(_slot(at(9), 120))
        assert scored.suitability == Suitability.ACCEPTABLE
        assert scored.day_type == DayType.MEETING_HEAVY
        assert "meeting-heavy" in scored.reason

    def test_short_slot_downgrade(self, at) -> None:
        scored = AvailabilityEngine(deep_work_days=["Thursday"]).score_slot(_slot(at(9), 20))
        assert scored.suitability == Suitability.GOOD
        assert scored.reason.startswith("Short slot (20 minutes)")

        scored = AvailabilityEngine().score_slot(_slot(at(15), 20))
        assert scored.suitability == Suitability.ACCEPTABLE

    def test_extended_slot_on_deep_work_day(self, at) -> None:
        scored = AvailabilityEngine(deep_work_days=["Thursday"]).score_slot(_slot(at(13), 300))
        assert scored.suitability == Suitability.EXCELLENT
        assert scored.reason.startswith("Extended 300 minute slot on Thursday")

    def test_fifty_minute_morning_slot_on_deep_work_day_keeps_day_reason(self, at) -> None:
        scored = AvailabilityEngine(deep_work_days=["Thursday"]).score_slot(_slot(at(9), 50))
        assert scored.suitability == Suitability.EXCELLENT
        assert "deep work day" in scored.reason


class TestWorkingLocation:
    def test_annotates_matching_day(self, at) -> None:
        location = make_event(
            "wl", at(0), at(0, days=1), is_all_day=True,
            event_type=EventType.WORKING_LOCATION,
            type_properties={"type": "officeLocation", "officeLocation": {"label": "HQ"}},
        )
        slots = [_slot(at(9), 60), _slot(at(9, days=1), 60)]
        annotated = annotate_working_location(slots, [location])
        assert annotated[0].working_location == WorkingLocationInfo(
            type=WorkingLocationType.OFFICE_LOCATION, label="HQ",
        )
        assert annotated[1].working_location.type == WorkingLocationType.UNKNOWN

    def test_custom_location_label(self, at) -> None:
        location = make_event(
            "wl", at(0), at(0, days=1), is_all_day=True,
            event_type=EventType.WORKING_LOCATION,
            type_properties={"type": "customLocation", "customLocation": {"label": "Cafe"}},
        )
        (slot,) = annotate_working_location([_slot(at(14), 60)], [location])
        assert slot.working_location.type == WorkingLocationType.CUSTOM_LOCATION
        assert slot.working_location.label == "Cafe"

    def test_missing_type_is_unknown(self, at) -> None:
        location = make_event("wl", at(0), at(0, days=1), event_type=EventType.WORKING_LOCATION)
        (slot,) = annotate_working_location([_slot(at(14), 60)], [location])
        assert slot.working_location.type == WorkingLocationType.UNKNOWN

    def test_prefer_location_is_a_stable_partition(self, at) -> None:
        home = WorkingLocationInfo(type=WorkingLocationType.HOME_OFFICE)
        office = WorkingLocationInfo(type=WorkingLocationType.OFFICE_LOCATION)
        slots = [
            _slot(at(9), 60, working_location=office),
            _slot(at(11), 60, working_location=home),
            _slot(at(13), 60, working_location=office),
            _slot(at(15), 60, working_location=home),
        ]
        ordered = prefer_location(slots, PreferredLocation.HOME_OFFICE)
        assert [s.start.hour for s in ordered] == [11, 15, 9, 13]
        assert prefer_location(slots, PreferredLocation.ANY) == slots
        assert prefer_location(slots, None) == slots

    def test_rank_keeps_partition_only_for_full_ties(self, at) -> None:
        home = WorkingLocationInfo(type=WorkingLocationType.HOME_OFFICE)
        office = WorkingLocationInfo(type=WorkingLocationType.OFFICE_LOCATION)
        slots = [
            _slot(at(9), 60, suitability=Suitability.GOOD, working_location=office),
            _slot(at(9), 60, suitability=Suitability.GOOD, working_location=home),
            _slot(at(8), 60, suitability=Suitability.GOOD, working_location=office),
            _slot(at(14), 60, suitability=Suitability.EXCELLENT, working_location=office),
        ]
        ranked = rank_slots(prefer_location(slots, PreferredLocation.HOME_OFFICE))
        assert [(s.start.hour, s.working_location.type) for s in ranked] == [
            (14, WorkingLocationType.OFFICE_LOCATION),
            (8, WorkingLocationType.OFFICE_LOCATION),
            (9, WorkingLocationType.HOME_OFFICE),
            (9, WorkingLocationType.OFFICE_LOCATION),
        ]


class TestFindAvailableSlots:
    def test_all_day_blocking_event_leaves_no_slots(self, engine, at) -> None:
        events = [make_event("ooo", at(0), at(0, days=1), is_all_day=True, event_type=EventType.OUT_OF_OFFICE)]
        assert engine.find_available_slots(events, _request(at, max_duration_minutes=600)) == []

    def test_working_location_all_day_event_does_not_block(self, engine, at) -> None:
        events = [make_event("wl", at(0), at(0, days=1), is_all_day=True, event_type=EventType.WORKING_LOCATION)]
        slots = engine.find_available_slots(events, _request(at, max_duration_minutes=600))
        assert sum(s.duration_minutes for s in slots) == 540

    def test_duration_invariant(self, engine, at) -> None:
        events = [
            make_event("a", at(9, 10), at(10)),
            make_event("b", at(10, 20), at(11, 45)),
            make_event("c", at(12, 5), at(12, 50)),
            make_event("d", at(15), at(16, 30)),
        ]
        request = _request(at, min_duration_minutes=15, max_duration_minutes=120)
        slots = engine.find_available_slots(events, request)
        assert slots
        for slot in slots:
            assert 15 <= slot.duration_minutes <= 120
            assert slot.end - slot.start == dt.timedelta(minutes=slot.duration_minutes)

    def test_results_are_ranked(self, engine, at) -> None:
        events = [make_event("a", at(10), at(11)), make_event("b", at(13), at(14))]
        slots = engine.find_available_slots(events, _request(at))
        assert [(s.start.hour, s.suitability) for s in slots] == [
            (9, Suitability.EXCELLENT),
            (11, Suitability.EXCELLENT),
            (14, Suitability.GOOD),
        ]

    def test_legacy_mode_blocks_working_location(self, engine, at) -> None:
        events = [make_event("wl", at(12), at(13), event_type=EventType.WORKING_LOCATION)]
        type_aware = engine.find_available_slots(events, _request(at))
        legacy = engine.find_available_slots(events, _request(at, respect_blocking_event_types=False))
        assert len(type_aware) == 0  # one 540 minute gap exceeds the default max
        assert sorted(s.start.hour for s in legacy) == [9, 13]

    def test_custom_working_hours(self, engine, at) -> None:
        slots = engine.find_available_slots([], _request(at, working_hours={"start": "08:00", "end": "12:00"}))
        assert [(s.start, s.end) for s in slots] == [(at(8), at(12))]

    def test_aware_events_are_normalized_to_local_time(self, at) -> None:
        engine = AvailabilityEngine(timezone="Europe/Amsterdam")
        utc = dt.timezone.utc
        events = [make_event("a", at(9).replace(tzinfo=utc), at(10).replace(tzinfo=utc))]
        slots = engine.find_available_slots(events, _request(at))
        assert sorted((s.start, s.end) for s in slots) == [(at(9), at(10)), (at(11), at(18))]

    def test_multi_day_window(self, engine, at) -> None:
        request = FindSlotsRequest(start=at(0), end=at(0, days=2), max_duration_minutes=600)
        slots = engine.find_available_slots([], request)
        assert [s.start for s in slots] == [at(9), at(9, days=1)]

    def test_start_order_dominates_location_preference(self, engine, at) -> None:
        events = [
            make_event(
                "wl", at(0, days=1), at(0, days=2), is_all_day=True,
                event_type=EventType.WORKING_LOCATION,
                type_properties={"type": "homeOffice"},
            ),
        ]
        request = FindSlotsRequest(
            start=at(0), end=at(0, days=2), max_duration_minutes=600,
            preferred_working_location=PreferredLocation.HOME_OFFICE,
        )
        slots = engine.find_available_slots(events, request)
        assert [s.working_location.type for s in slots] == [
            WorkingLocationType.UNKNOWN,
            WorkingLocationType.HOME_OFFICE,
        ]


class TestHelpers:
    def test_iter_days_excludes_trailing_midnight(self, at, day) -> None:
        assert iter_days(at(0), at(0, days=1)) == [day]
        assert iter_days(at(0), at(1, days=1)) == [day, day + dt.timedelta(days=1)]

    def test_to_local(self) -> None:
        value = dt.datetime(2026, 7, 1, 12, tzinfo=dt.timezone.utc)
        assert to_local(value, ZoneInfo("Europe/Amsterdam")) == dt.datetime(2026, 7, 1, 14)
        assert to_local(dt.datetime(2026, 7, 1, 12), ZoneInfo("Europe/Amsterdam")) == dt.datetime(2026, 7, 1, 12)
