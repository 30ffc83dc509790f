"""Shared test fixtures for the receptionist backend test suite."""

from __future__ import annotations

import os
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

PACIFIC = ZoneInfo("America/Los_Angeles")
SIGNING_SECRET = "test-signing-secret"
EVENT_LINK = "https://www.google.com/calendar/event?eid=test-event-1"


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any test module imports, so config.py won't fail on
    module load.
    """
    os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
    os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
    os.environ.setdefault("GOOGLE_REFRESH_TOKEN", "test-refresh-token")
    os.environ.setdefault("RETELL_SIGNING_SECRET", SIGNING_SECRET)


# ── In-memory capabilities ───────────────────────────────────────────


class FakeCalendar:
    """Busy-interval source and event creator backed by plain lists."""

    def __init__(self) -> None:
        self.busy: list = []
        self.queries: list[tuple[datetime, datetime]] = []
        self.created: list[dict] = []
        self.link = EVENT_LINK
        self.error: Exception | None = None

    def busy_intervals(self, start, end):
        self.queries.append((start, end))
        return [b for b in self.busy if b.start < end and b.end > start]

    def create_event(self, **event):
        if self.error is not None:
            raise self.error
        self.created.append(event)
        return self.link


class FakeKnowledge:
    def __init__(self, answers=None, error: Exception | None = None) -> None:
        self.answers = answers or []
        self.error = error
        self.queries: list[str] = []

    def search(self, query):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.answers


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def fake_calendar():
    return FakeCalendar()


@pytest.fixture
def fake_knowledge():
    return FakeKnowledge()


@pytest.fixture
def now():
    """Tuesday 13 Oct 2026, 08:00 Pacific. The next business day is Wednesday."""
    return datetime(2026, 10, 13, 8, 0, tzinfo=PACIFIC)


@pytest.fixture
def store():
    from src.services.sessions import SessionStore

    return SessionStore()


@pytest.fixture
def dispatcher(store, fake_calendar, fake_knowledge, now):
    from src.services.booking import BookingRecorder
    from src.tools.dispatcher import ToolDispatcher

    return ToolDispatcher(
        store,
        BookingRecorder(store, fake_calendar),
        fake_calendar,
        fake_knowledge,
        clock=lambda: now,
    )
