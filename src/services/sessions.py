"""Thread-safe in-memory store of per-call conversation state.

Design decisions
────────────────
• **One entry per call id.**  A ``CallSession`` holds the transcript, the
  customer fields collected so far and the booking ledger.  Nothing outside
  the store keeps a reference across calls; every lookup is by call id.
• **Two lock levels.**  A store-wide ``threading.Lock`` only guards the
  id → session map, so calls never serialise each other.  Each session
  carries its own ``threading.RLock`` for mutations; ``lock_for`` exposes it
  so a booking can hold it across the duplicate check, the external call and
  the ledger write.
• **Ledger keyed by (start, end).**  Aware datetimes hash by instant, so
  ``...T18:00:00Z`` and ``...T11:00:00-07:00`` collapse to one entry.
• **Unknown ids are silent no-ops.**  Webhook delivery order is not
  guaranteed; a late transcript delta or a replayed ``call.ended`` must not
  raise.
• **Expiry is measured from creation.**  ``sweep_expired`` closes every
  session older than the TTL even when no ``call.ended`` ever arrives.
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from src.config import SESSION_SWEEP_INTERVAL_SECONDS, SESSION_TTL_SECONDS

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ── Data model ───────────────────────────────────────────────────────


@dataclass
class CustomerFields:
    """Customer details gathered over the call (each optional until heard)."""

    name: str | None = None
    phone: str | None = None
    address: str | None = None
    issue: str | None = None


@dataclass
class Booking:
    """A confirmed appointment in a session's ledger."""

    start: datetime
    end: datetime
    link: str | None = None


@dataclass
class CallSummary:
    """What gets logged when a session is closed."""

    call_id: str
    duration_seconds: float
    bookings: int
    transcript_length: int


@dataclass
class CallSession:
    call_id: str
    created_at: datetime
    transcript: str = ""
    fields: CustomerFields = field(default_factory=CustomerFields)
    bookings: dict[tuple[datetime, datetime], Booking] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)


# ── Store ────────────────────────────────────────────────────────────


class SessionStore:
    """Owns every ``CallSession``; exposes only per-call-id operations."""

    def __init__(
        self,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._sessions: dict[str, CallSession] = {}
        self._lock = threading.Lock()

    # ── Lifecycle ────────────────────────────────────────────────────

    def init(self, call_id: str) -> CallSession:
        """Create a fresh session, replacing any existing one for *call_id*."""
        session = CallSession(call_id=call_id, created_at=self._clock())
        with self._lock:
            replaced = call_id in self._sessions
            self._sessions[call_id] = session
        if replaced:
            logger.warning("[%s] Session re-initialised; previous state discarded", call_id)
        logger.debug("[%s] Session created", call_id)
        return session

    def get(self, call_id: str) -> CallSession | None:
        with self._lock:
            return self._sessions.get(call_id)

    def close(self, call_id: str) -> CallSummary | None:
        """Remove the session and log its summary.  No-op for unknown ids."""
        with self._lock:
            session = self._sessions.pop(call_id, None)
        if session is None:
            return None

        with session._lock:
            summary = CallSummary(
                call_id=call_id,
                duration_seconds=(self._clock() - session.created_at).total_seconds(),
                bookings=len(session.bookings),
                transcript_length=len(session.transcript),
            )
        logger.info(
            "[%s] Call summary: duration=%.1fs bookings=%d transcript_length=%d",
            call_id, summary.duration_seconds, summary.bookings, summary.transcript_length,
        )
        return summary

    def sweep_expired(self, now: datetime | None = None) -> list[str]:
        """Close every session created more than the TTL ago.

        Returns the ids that were closed.  Running it again immediately is a
        no-op because the expired entries are already gone.
        """
        cutoff = (now or self._clock()) - self._ttl
        with self._lock:
            expired = [cid for cid, s in self._sessions.items() if s.created_at < cutoff]

        closed = [cid for cid in expired if self.close(cid) is not None]
        if closed:
            logger.info("Swept %d expired session(s)", len(closed))
        return closed

    # ── Mutations ────────────────────────────────────────────────────

    def append_transcript(self, call_id: str, delta: str) -> None:
        session = self.get(call_id)
        if session is None:
            logger.debug("[%s] Transcript delta for unknown call ignored", call_id)
            return
        with session._lock:
            session.transcript += delta

    def update_fields(self, call_id: str, **values: str | None) -> None:
        """Merge non-empty customer fields into the session."""
        session = self.get(call_id)
        if session is None:
            return
        known = {f.name for f in dataclasses.fields(CustomerFields)}
        with session._lock:
            for name, value in values.items():
                if name in known and value:
                    setattr(session.fields, name, value)

    def record_booking(
        self,
        call_id: str,
        start: datetime,
        end: datetime,
        link: str | None = None,
    ) -> None:
        """Insert a booking unless the (start, end) pair is already recorded.

        A link may be attached to an existing entry that has none yet;
        otherwise existing entries are left untouched.
        """
        session = self.get(call_id)
        if session is None:
            return
        with session._lock:
            existing = session.bookings.get((start, end))
            if existing is None:
                session.bookings[(start, end)] = Booking(start=start, end=end, link=link)
            elif existing.link is None and link:
                existing.link = link

    def find_booking(self, call_id: str, start: datetime, end: datetime) -> str | None:
        """Return the link of an already-recorded booking, if any."""
        session = self.get(call_id)
        if session is None:
            return None
        with session._lock:
            booking = session.bookings.get((start, end))
            return booking.link if booking else None

    @contextlib.contextmanager
    def lock_for(self, call_id: str) -> Iterator[None]:
        """Hold the per-call lock; unknown ids get no lock at all."""
        session = self.get(call_id)
        if session is None:
            yield
            return
        with session._lock:
            yield

    # ── Introspection ────────────────────────────────────────────────

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


# ── Background sweeper ───────────────────────────────────────────────


class SessionSweeper:
    """Daemon thread that calls ``sweep_expired`` on a fixed cadence."""

    def __init__(
        self,
        store: SessionStore,
        interval_seconds: float = SESSION_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._store = store
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="session-sweeper")
        self._thread.start()
        logger.info("Session sweeper started (interval=%ss)", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._store.sweep_expired()
            except Exception:
                logger.exception("Session sweep failed")
