"""HTTP client for the Google Calendar API v3 with token refresh, retry
logic and timeout handling.

Google Calendar API docs: https://developers.google.com/calendar/api/v3/reference
Requests carry a short-lived OAuth access token.  Its lifecycle (refresh
from the long-lived refresh token, expiry tracking) is handled by
google-auth ``Credentials``; the REST calls themselves go through httpx.

The rest of the backend depends only on the two narrow capabilities defined
here, ``BusyIntervalSource`` and ``EventCreator``; tests substitute fakes.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2.credentials import Credentials

from src.config import (
    GOOGLE_CALENDAR_BASE_URL,
    GOOGLE_CALENDAR_ID,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REFRESH_TOKEN,
    GOOGLE_TOKEN_URL,
)
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 0.5
REQUEST_TIMEOUT_SECONDS = 10.0
TOKEN_OPERATION = "POST /token"


class CalendarAPIError(Exception):
    """Raised when a Google Calendar call fails (after retries, if any)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


# ── Capabilities ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class BusyInterval:
    """An existing calendar occupancy, half-open ``[start, end)``."""

    start: datetime
    end: datetime


class BusyIntervalSource(Protocol):
    def busy_intervals(self, start: datetime, end: datetime) -> list[BusyInterval]:
        """Return the busy intervals overlapping ``[start, end)``."""
        ...


class EventCreator(Protocol):
    def create_event(
        self,
        *,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        timezone: str,
        location: str,
    ) -> str:
        """Create the event and return a shareable link to it."""
        ...


def _parse_rfc3339(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


# ── Google implementation ────────────────────────────────────────────


class GoogleCalendarClient:
    """Thin wrapper around the Google Calendar REST API.

    Implements both ``BusyIntervalSource`` and ``EventCreator``.

    **Retry contract**

    Read-only calls are retried with exponential backoff: freeBusy on
    timeouts, connection errors and 5xx responses, token refresh on
    transport failures.  Event creation is *never* retried: a retried
    insert whose first attempt actually succeeded upstream would create a
    duplicate appointment.
    """

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        refresh_token: str | None = None,
        calendar_id: str | None = None,
        base_url: str | None = None,
        token_url: str | None = None,
    ):
        self._calendar_id = calendar_id or GOOGLE_CALENDAR_ID
        self._credentials = Credentials(
            token=None,
            refresh_token=refresh_token or GOOGLE_REFRESH_TOKEN,
            client_id=client_id or GOOGLE_CLIENT_ID,
            client_secret=client_secret or GOOGLE_CLIENT_SECRET,
            token_uri=token_url or GOOGLE_TOKEN_URL,
        )
        self._auth_transport = GoogleAuthRequest()
        self._auth_request = functools.partial(self._auth_transport, timeout=REQUEST_TIMEOUT_SECONDS)
        self._client = httpx.Client(
            base_url=base_url or GOOGLE_CALENDAR_BASE_URL,
            headers={"Content-Type": "application/json"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        self._token_lock = threading.Lock()

    def close(self) -> None:
        self._client.close()
        self._auth_transport.session.close()

    # ── Internal helpers ─────────────────────────────────────────────

    def _send(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        retry: bool,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Execute an HTTP request, retrying transient failures if *retry*."""
        attempts = MAX_RETRIES if retry else 1
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            t0 = time.perf_counter()
            try:
                response = self._client.request(method, url, **kwargs)
                elapsed = (time.perf_counter() - t0) * 1000
                if response.status_code >= 400:
                    metrics.record_failure(
                        "google_calendar", operation,
                        error_type=f"{response.status_code // 100}xx", latency_ms=elapsed,
                    )
                    kind = "Server" if response.status_code >= 500 else "Client"
                    raise CalendarAPIError(
                        f"{kind} error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                metrics.record_success("google_calendar", operation, latency_ms=elapsed)
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                metrics.record_failure(
                    "google_calendar", operation, error_type=type(exc).__name__,
                )
                last_error = exc
                logger.warning(
                    "Google Calendar %s attempt %d/%d failed (%s)",
                    operation, attempt, attempts, type(exc).__name__,
                )
            except CalendarAPIError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "Google Calendar %s server error on attempt %d/%d",
                        operation, attempt, attempts,
                    )
                else:
                    raise  # 4xx errors are not retried

            if attempt < attempts:
                time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise CalendarAPIError(
            f"Google Calendar {operation} failed after {attempts} attempt(s): {last_error}",
            status_code=getattr(last_error, "status_code", None),
        )

    def _get_access_token(self) -> str:
        """Return a valid access token, refreshing it when close to expiry.

        ``Credentials.valid`` turns false shortly before Google's stated
        expiry.  Transport failures are retried with backoff; a
        ``RefreshError`` (revoked or invalid grant) is not.
        """
        with self._token_lock:
            if self._credentials.valid:
                return self._credentials.token

            last_error: Exception | None = None
            for attempt in range(1, MAX_RETRIES + 1):
                t0 = time.perf_counter()
                try:
                    self._credentials.refresh(self._auth_request)
                except RefreshError as exc:
                    metrics.record_failure(
                        "google_calendar", TOKEN_OPERATION, error_type="RefreshError",
                        latency_ms=(time.perf_counter() - t0) * 1000,
                    )
                    raise CalendarAPIError(f"Google token refresh failed: {exc}") from exc
                except TransportError as exc:
                    metrics.record_failure(
                        "google_calendar", TOKEN_OPERATION, error_type=type(exc).__name__,
                    )
                    last_error = exc
                    logger.warning(
                        "Google token refresh attempt %d/%d failed (%s)",
                        attempt, MAX_RETRIES, exc,
                    )
                    if attempt < MAX_RETRIES:
                        time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))
                    continue

                metrics.record_success(
                    "google_calendar", TOKEN_OPERATION,
                    latency_ms=(time.perf_counter() - t0) * 1000,
                )
                logger.debug("Google access token refreshed (expiry=%s)", self._credentials.expiry)
                return self._credentials.token

            raise CalendarAPIError(
                f"Google Calendar {TOKEN_OPERATION} failed after {MAX_RETRIES} attempt(s): {last_error}",
            )

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._get_access_token()}"}

    # ── Public API methods ───────────────────────────────────────────

    def busy_intervals(self, start: datetime, end: datetime) -> list[BusyInterval]:
        """Query freeBusy for the configured calendar over ``[start, end)``.

        **Not cached**: availability changes in real time and must always
        be fetched fresh.
        """
        data = self._send(
            "POST",
            "/freeBusy",
            operation="POST /freeBusy",
            retry=True,
            headers=self._auth_headers(),
            json={
                "timeMin": start.isoformat(),
                "timeMax": end.isoformat(),
                "items": [{"id": self._calendar_id}],
            },
        )
        calendar = data.get("calendars", {}).get(self._calendar_id, {})
        if calendar.get("errors"):
            raise CalendarAPIError(f"freeBusy reported errors: {calendar['errors']}")

        return [
            BusyInterval(start=_parse_rfc3339(b["start"]), end=_parse_rfc3339(b["end"]))
            for b in calendar.get("busy", [])
        ]

    def create_event(
        self,
        *,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        timezone: str,
        location: str,
    ) -> str:
        """Insert an event and return its ``htmlLink``."""
        payload = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start.isoformat(), "timeZone": timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": timezone},
            "location": location,
        }
        data = self._send(
            "POST",
            f"/calendars/{quote(self._calendar_id, safe='')}/events",
            operation="POST /events",
            retry=False,
            headers=self._auth_headers(),
            json=payload,
        )
        link = data.get("htmlLink")
        logger.info("Calendar event created: %s", data.get("id", "?"))
        return link or "Event created successfully"


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: GoogleCalendarClient | None = None
_client_lock = threading.Lock()


def get_calendar_client() -> GoogleCalendarClient:
    """Return a module-level GoogleCalendarClient singleton.

    Uses double-checked locking so that the lock is only acquired during
    the first initialisation, not on every subsequent call.
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = GoogleCalendarClient()
    return _client
