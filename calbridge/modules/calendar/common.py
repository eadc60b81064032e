"""Shared free time across several people."""

from __future__ import annotations

import datetime as dt
import math
from typing import Awaitable, Callable, Iterable
from zoneinfo import ZoneInfo

from calbridge.logging_config import get_logger
from calbridge.modules.calendar.availability import to_local
from calbridge.modules.calendar.models import (
    BusyPeriod,
    CommonAvailabilityResult,
    CommonFreeSlot,
    ParticipantAvailability,
)

logger = get_logger(__name__)

FreeBusyQuery = Callable[[list[str], dt.datetime, dt.datetime], Awaitable[dict[str, ParticipantAvailability]]]


def merge_busy_periods(
    periods: Iterable[BusyPeriod], window_start: dt.datetime, window_end: dt.datetime,
) -> list[BusyPeriod]:
    """Clip to the window, sort and merge. Touching periods merge into one."""
    clipped = sorted(
        (
            (max(p.start, window_start), min(p.end, window_end))
            for p in periods
        ),
        key=lambda bounds: bounds[0],
    )
    merged: list[BusyPeriod] = []
    for start, end in clipped:
        if start >= end:
            continue
        if merged and start <= merged[-1].end:
            if end > merged[-1].end:
                merged[-1] = BusyPeriod(start=merged[-1].start, end=end)
        else:
            merged.append(BusyPeriod(start=start, end=end))
    return merged


def free_gaps(
    merged: list[BusyPeriod],
    window_start: dt.datetime,
    window_end: dt.datetime,
    min_duration_minutes: int,
) -> list[CommonFreeSlot]:
    """Complement of sorted, merged busy periods within the window."""
    gaps: list[CommonFreeSlot] = []
    cursor = window_start
    for period in [*merged, BusyPeriod(start=window_end, end=window_end)]:
        minutes = (period.start - cursor).total_seconds() / 60
        if minutes >= min_duration_minutes and minutes > 0:
            gaps.append(CommonFreeSlot(start=cursor, end=period.start, duration_minutes=math.floor(minutes)))
        cursor = max(cursor, period.end)
    return gaps


class CommonAvailabilityCalculator:
    """Finds slots where every reachable participant is free.

    Participants whose free/busy lookup fails are reported with their error
    and left out of the computation instead of failing the whole request.
    """

    def __init__(self, query: FreeBusyQuery, timezone: str = "UTC") -> None:
        self._query = query
        self._tz = ZoneInfo(timezone)

    async def find_common_availability(
        self,
        identities: list[str],
        start: dt.datetime,
        end: dt.datetime,
        min_duration_minutes: int = 30,
    ) -> CommonAvailabilityResult:
        identities = list(dict.fromkeys(i.strip() for i in identities if i.strip()))
        if not identities:
            raise ValueError("At least one identity is required")
        if start >= end:
            raise ValueError("Window start must be before window end")

        window_start = to_local(start, self._tz)
        window_end = to_local(end, self._tz)
        answers = await self._query(identities, start, end)

        participants: list[ParticipantAvailability] = []
        busy: list[BusyPeriod] = []
        for identity in identities:
            answer = answers.get(identity) or ParticipantAvailability(
                identity=identity, error="No free/busy data returned",
            )
            if answer.error:
                logger.warning("common_availability_identity_excluded", identity=identity, error=answer.error)
            else:
                busy.extend(
                    BusyPeriod(start=to_local(p.start, self._tz), end=to_local(p.end, self._tz))
                    for p in answer.busy
                )
            participants.append(answer)

        if all(p.error for p in participants):
            common: list[CommonFreeSlot] = []
        else:
            merged = merge_busy_periods(busy, window_start, window_end)
            common = free_gaps(merged, window_start, window_end, min_duration_minutes)

        logger.info(
            "common_availability_computed",
            identities=len(identities),
            excluded=sum(1 for p in participants if p.error),
            slots=len(common),
        )
        return CommonAvailabilityResult(
            common_slots=common,
            participants=participants,
            window_start=window_start,
            window_end=window_end,
        )
