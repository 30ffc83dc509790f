"""Routing of the voice agent's tool invocations to their handlers.

``ToolDispatcher.dispatch`` is the single error boundary between the
business logic and the webhook transport: it *never* raises.  Every outcome
is a plain dict, either the tool's result payload or an error envelope::

    {"error": "<message the agent can act on>", "error_type": "<kind>"}

``error_type`` lets the agent tell "no availability" (``not_found``) apart
from bad arguments (``validation``) and upstream outages (``external``).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from src.config import DEFAULT_APPT_DURATION_MINS
from src.services.booking import BookingDetails, BookingFailedError, BookingRecorder
from src.services.calendar_client import BusyIntervalSource, CalendarAPIError
from src.services.metrics import metrics
from src.services.sessions import SessionStore
from src.services.slots import SlotNotFoundError, find_slot
from src.tools.knowledge import KnowledgeLookup, KnowledgeLookupError
from src.tools.schemas import (
    TOOL_SCHEMAS,
    AppointmentArgs,
    BookCalendarArgs,
    ConfirmReadbackArgs,
    ProposeSlotArgs,
    SearchKbArgs,
)

logger = logging.getLogger(__name__)

# ── Error kinds ──────────────────────────────────────────────────────
UNKNOWN_TOOL = "unknown_tool"
VALIDATION = "validation"
NOT_FOUND = "not_found"
EXTERNAL = "external"
INTERNAL = "internal"


def error_envelope(message: str, error_type: str) -> dict[str, str]:
    return {"error": message, "error_type": error_type}


def _describe_validation_error(tool_name: str, exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "arguments"
        problems.append(f"{location}: {err['msg']}")
    return f"Invalid arguments for {tool_name}: " + "; ".join(problems)


class ToolDispatcher:
    """Validates tool arguments and invokes the matching handler."""

    def __init__(
        self,
        store: SessionStore,
        recorder: BookingRecorder,
        calendar: BusyIntervalSource,
        knowledge: KnowledgeLookup,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = store
        self._recorder = recorder
        self._calendar = calendar
        self._knowledge = knowledge
        self._clock = clock
        self._handlers: dict[str, Callable[[str, Any], dict[str, Any]]] = {
            "search_kb": self._search_kb,
            "propose_slot": self._propose_slot,
            "book_calendar": self._book_calendar,
            "confirm_readback": self._confirm_readback,
        }

    # ── Entry point ──────────────────────────────────────────────────

    def dispatch(
        self,
        tool_name: str,
        arguments: Any,
        call_id: str,
    ) -> dict[str, Any]:
        """Run *tool_name* for *call_id*; always returns a dict.

        Missing (``None``) arguments are treated as an empty object; any other
        non-object value fails validation like a bad field would.
        """
        handler = self._handlers.get(tool_name)
        if handler is None:
            logger.warning("[%s] Unknown tool requested: %s", call_id, tool_name)
            metrics.record_failure("tool", tool_name, error_type=UNKNOWN_TOOL)
            return error_envelope(f"Unknown tool: {tool_name}", UNKNOWN_TOOL)

        _, args_model = TOOL_SCHEMAS[tool_name]
        t0 = time.perf_counter()
        try:
            args = args_model.model_validate(arguments if arguments is not None else {})
            result = handler(call_id, args)
        except ValidationError as exc:
            outcome = error_envelope(_describe_validation_error(tool_name, exc), VALIDATION)
        except SlotNotFoundError as exc:
            outcome = error_envelope(str(exc), NOT_FOUND)
        except (BookingFailedError, CalendarAPIError, KnowledgeLookupError) as exc:
            logger.error("[%s] %s failed upstream: %s", call_id, tool_name, exc)
            outcome = error_envelope(str(exc), EXTERNAL)
        except Exception:
            logger.exception("[%s] %s raised unexpectedly", call_id, tool_name)
            outcome = error_envelope("Tool execution failed", INTERNAL)
        else:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_success("tool", tool_name, latency_ms=elapsed)
            logger.info("[%s] %s succeeded in %.0fms", call_id, tool_name, elapsed)
            return result

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_failure("tool", tool_name, error_type=outcome["error_type"], latency_ms=elapsed)
        logger.info("[%s] %s -> %s: %s", call_id, tool_name, outcome["error_type"], outcome["error"])
        return outcome

    # ── Handlers ─────────────────────────────────────────────────────

    def _search_kb(self, call_id: str, args: SearchKbArgs) -> dict[str, Any]:
        answers = self._knowledge.search(args.query)
        return {"answers": [{"q": answer.q, "a": answer.a} for answer in answers]}

    def _propose_slot(self, call_id: str, args: ProposeSlotArgs) -> dict[str, Any]:
        slot = find_slot(
            self._calendar,
            now=self._clock(),
            preferred_date=args.preferred_date,
            duration_minutes=args.duration_mins or DEFAULT_APPT_DURATION_MINS,
        )
        return slot.to_dict()

    def _book_calendar(self, call_id: str, args: BookCalendarArgs) -> dict[str, Any]:
        self._remember_customer(call_id, args)
        link = self._recorder.book(
            call_id,
            BookingDetails(
                name=args.name,
                phone=args.phone,
                address=args.address,
                issue=args.issue,
                start=args.start,
                end=args.end,
            ),
        )
        return {"status": "booked", "link": link}

    def _confirm_readback(self, call_id: str, args: ConfirmReadbackArgs) -> dict[str, Any]:
        self._remember_customer(call_id, args.details)
        return {"ok": True}

    def _remember_customer(self, call_id: str, details: AppointmentArgs) -> None:
        self._store.update_fields(
            call_id,
            name=details.name,
            phone=details.phone,
            address=details.address,
            issue=details.issue,
        )
