"""Tests for the idempotent booking recorder."""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from src.services.booking import BookingDetails, BookingFailedError, BookingRecorder
from src.services.calendar_client import CalendarAPIError

START = datetime(2026, 10, 14, 11, 0, tzinfo=ZoneInfo("America/Los_Angeles"))

DETAILS = BookingDetails(
    name="Ana Diaz",
    phone="555-0100",
    address="12 Oak St, Woodland",
    issue="Furnace not igniting",
    start=START,
    end=START + timedelta(hours=2),
)


@pytest.fixture
def recorder(store, fake_calendar):
    return BookingRecorder(store, fake_calendar)


class TestBookingPayload:
    def test_event_payload(self, store, recorder, fake_calendar):
        store.init("c1")
        recorder.book("c1", DETAILS)

        event = fake_calendar.created[0]
        assert event["summary"] == "HVAC Service - Ana Diaz"
        assert "Customer: Ana Diaz" in event["description"]
        assert "Phone: 555-0100" in event["description"]
        assert "Address: 12 Oak St, Woodland" in event["description"]
        assert "Issue: Furnace not igniting" in event["description"]
        assert event["start"] == DETAILS.start
        assert event["end"] == DETAILS.end
        assert event["timezone"] == "America/Los_Angeles"
        assert event["location"] == "12 Oak St, Woodland"

    def test_returns_link_and_records_it(self, store, recorder, fake_calendar):
        store.init("c1")
        link = recorder.book("c1", DETAILS)
        assert link == fake_calendar.link
        assert store.find_booking("c1", DETAILS.start, DETAILS.end) == link


class TestIdempotency:
    def test_repeat_booking_makes_one_external_call(self, store, recorder, fake_calendar):
        store.init("c1")
        first = recorder.book("c1", DETAILS)
        second = recorder.book("c1", DETAILS)

        assert first == second
        assert len(fake_calendar.created) == 1
        assert len(store.get("c1").bookings) == 1

    def test_different_window_books_again(self, store, recorder, fake_calendar):
        store.init("c1")
        recorder.book("c1", DETAILS)
        later = replace(
            DETAILS,
            start=DETAILS.start + timedelta(days=1),
            end=DETAILS.end + timedelta(days=1),
        )
        recorder.book("c1", later)
        assert len(fake_calendar.created) == 2

    def test_same_window_on_other_call_is_separate(self, store, recorder, fake_calendar):
        store.init("c1")
        store.init("c2")
        recorder.book("c1", DETAILS)
        recorder.book("c2", DETAILS)
        assert len(fake_calendar.created) == 2

    def test_concurrent_attempts_create_one_event(self, store, fake_calendar):
        store.init("c1")
        original = fake_calendar.create_event

        def slow_create(**event):
            time.sleep(0.05)
            return original(**event)

        fake_calendar.create_event = slow_create
        recorder = BookingRecorder(store, fake_calendar)
        links: list[str] = []

        threads = [
            threading.Thread(target=lambda: links.append(recorder.book("c1", DETAILS)))
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(fake_calendar.created) == 1
        assert len(set(links)) == 1

    def test_without_session_books_but_does_not_track(self, store, recorder, fake_calendar):
        recorder.book("unknown", DETAILS)
        recorder.book("unknown", DETAILS)
        assert len(fake_calendar.created) == 2
        assert store.get("unknown") is None


class TestFailures:
    def test_calendar_error_raises_booking_failed(self, store, recorder, fake_calendar):
        store.init("c1")
        fake_calendar.error = CalendarAPIError("Server error 503", status_code=503)

        with pytest.raises(BookingFailedError):
            recorder.book("c1", DETAILS)
        assert store.get("c1").bookings == {}

    def test_retry_after_failure_books(self, store, recorder, fake_calendar):
        store.init("c1")
        fake_calendar.error = CalendarAPIError("timeout")
        with pytest.raises(BookingFailedError):
            recorder.book("c1", DETAILS)

        fake_calendar.error = None
        assert recorder.book("c1", DETAILS) == fake_calendar.link
        assert len(store.get("c1").bookings) == 1
