"""Idempotent creation of calendar events for confirmed appointments."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from src.config import TIMEZONE
from src.services.calendar_client import CalendarAPIError, EventCreator
from src.services.sessions import SessionStore

logger = logging.getLogger(__name__)


class BookingFailedError(Exception):
    """The calendar refused or failed to create the event; nothing was recorded."""


@dataclass(frozen=True)
class BookingDetails:
    name: str
    phone: str
    address: str
    issue: str
    start: datetime
    end: datetime


class BookingRecorder:
    """Creates at most one external event per (start, end) pair per call.

    The per-call lock is held across the ledger check, the external insert
    and the ledger write, so two near-simultaneous ``book_calendar``
    invocations for the same call cannot both create an event.
    """

    def __init__(
        self,
        store: SessionStore,
        creator: EventCreator,
        *,
        timezone: str = TIMEZONE,
    ) -> None:
        self._store = store
        self._creator = creator
        self._timezone = timezone

    def book(self, call_id: str, details: BookingDetails) -> str:
        """Return the event link, creating the event only if not yet booked.

        Raises:
            BookingFailedError: if the calendar call fails.
        """
        with self._store.lock_for(call_id):
            existing = self._store.find_booking(call_id, details.start, details.end)
            if existing is not None:
                logger.info("[%s] Booking already recorded; returning stored link", call_id)
                return existing

            if self._store.get(call_id) is None:
                logger.warning("[%s] Booking for a call with no session; it will not be tracked", call_id)

            try:
                link = self._creator.create_event(
                    summary=f"HVAC Service - {details.name}",
                    description=(
                        f"Customer: {details.name}\n"
                        f"Phone: {details.phone}\n"
                        f"Address: {details.address}\n"
                        f"Issue: {details.issue}"
                    ),
                    start=details.start,
                    end=details.end,
                    timezone=self._timezone,
                    location=details.address,
                )
            except CalendarAPIError as exc:
                logger.error("[%s] Failed to create calendar event: %s", call_id, exc)
                raise BookingFailedError("Failed to create calendar event") from exc

            self._store.record_booking(call_id, details.start, details.end, link)
            logger.info("[%s] Booked %s – %s", call_id, details.start.isoformat(), details.end.isoformat())
            return link
