"""Earliest-free-window search over a bounded multi-day horizon.

Algorithm
─────────
1. The search origin is the caller's preferred date, or else the next
   business day after *today* (in the service timezone).
2. For each of the next ``horizon_days`` days from the origin, skipping the
   closed weekday, fetch busy intervals for the day's operating window.
3. Starting at opening time, step forward in increments of the requested
   duration and accept the first candidate that ends by closing time,
   does not start before *now*, and overlaps no busy interval.

Everything time-dependent (``now``, timezone, opening hours) is passed in,
so the search is deterministic for a given busy-interval feed.  All
comparisons are between aware datetimes (absolute instants).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from src.config import (
    CLOSED_WEEKDAY,
    DEFAULT_APPT_DURATION_MINS,
    SEARCH_HORIZON_DAYS,
    SERVICE_HOURS_END,
    SERVICE_HOURS_START,
    TIMEZONE,
)
from src.services.calendar_client import BusyInterval, BusyIntervalSource

logger = logging.getLogger(__name__)


class SlotNotFoundError(Exception):
    """No conflict-free window exists within the search horizon.

    A business outcome ("no availability"), not a transient fault: callers
    should not repeat the identical search.
    """


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime

    def to_dict(self) -> dict[str, str]:
        return {"startISO": self.start.isoformat(), "endISO": self.end.isoformat()}


def _parse_clock(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def next_business_day(today: date, closed_weekday: int = CLOSED_WEEKDAY) -> date:
    """Return the day after *today*, pushed forward past the closed weekday."""
    candidate = today + timedelta(days=1)
    if candidate.weekday() == closed_weekday:
        candidate += timedelta(days=1)
    return candidate


def overlaps(start: datetime, end: datetime, busy: BusyInterval) -> bool:
    """Half-open overlap test: intervals that only touch do not conflict."""
    return start < busy.end and end > busy.start


def _first_free_in_day(
    opening: datetime,
    closing: datetime,
    duration: timedelta,
    busy: Iterable[BusyInterval],
    not_before: datetime,
) -> Slot | None:
    # Step in UTC; same-zone datetime arithmetic is wall-clock time
    tz = opening.tzinfo
    busy = list(busy)
    start, closing = opening.astimezone(UTC), closing.astimezone(UTC)
    while start + duration <= closing:
        end = start + duration
        if start >= not_before and not any(overlaps(start, end, b) for b in busy):
            return Slot(start=start.astimezone(tz), end=end.astimezone(tz))
        start = end
    return None


def find_slot(
    source: BusyIntervalSource,
    *,
    now: datetime,
    preferred_date: date | None = None,
    duration_minutes: int = DEFAULT_APPT_DURATION_MINS,
    timezone: str = TIMEZONE,
    opens_at: str = SERVICE_HOURS_START,
    closes_at: str = SERVICE_HOURS_END,
    closed_weekday: int = CLOSED_WEEKDAY,
    horizon_days: int = SEARCH_HORIZON_DAYS,
) -> Slot:
    """Return the earliest conflict-free slot of *duration_minutes*.

    Raises:
        ValueError: if *duration_minutes* is not positive or *now* is naive.
        SlotNotFoundError: if the whole horizon is booked.
        CalendarAPIError: propagated from *source*.
    """
    if duration_minutes <= 0:
        raise ValueError("Duration must be a positive number of minutes")
    if now.tzinfo is None:
        raise ValueError("'now' must be timezone-aware")

    tz = ZoneInfo(timezone)
    duration = timedelta(minutes=duration_minutes)
    open_time, close_time = _parse_clock(opens_at), _parse_clock(closes_at)
    origin = preferred_date or next_business_day(now.astimezone(tz).date(), closed_weekday)

    for offset in range(horizon_days):
        day = origin + timedelta(days=offset)
        if day.weekday() == closed_weekday:
            continue

        opening = datetime.combine(day, open_time, tzinfo=tz)
        closing = datetime.combine(day, close_time, tzinfo=tz)
        if closing <= now:
            continue

        busy = source.busy_intervals(opening, closing)
        slot = _first_free_in_day(opening, closing, duration, busy, now)
        if slot is not None:
            logger.debug("Found slot %s – %s", slot.start.isoformat(), slot.end.isoformat())
            return slot
        logger.debug("No free %d-minute slot on %s (%d busy)", duration_minutes, day, len(busy))

    raise SlotNotFoundError(f"No available slots found in the next {horizon_days} days")
