"""Developer CLI for the Woodland HVAC receptionist backend.

For production, run the FastAPI server (src/server.py).  This CLI exercises
the pieces that are awkward to reach through a voice call.

Usage:
    uv run python -m src.main find-slot                    # next business day
    uv run python -m src.main find-slot --date 2026-10-20 --duration 90
    uv run python -m src.main sign payload.json            # x-retell-signature value
    uv run python -m src.main --debug find-slot            # show API calls
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, date, datetime
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


def _find_slot(args: argparse.Namespace) -> int:
    from src.config import DEFAULT_APPT_DURATION_MINS
    from src.services.calendar_client import CalendarAPIError, get_calendar_client
    from src.services.slots import SlotNotFoundError, find_slot

    try:
        slot = find_slot(
            get_calendar_client(),
            now=datetime.now(UTC),
            preferred_date=args.date,
            duration_minutes=args.duration or DEFAULT_APPT_DURATION_MINS,
        )
    except SlotNotFoundError as exc:
        print(exc)
        return 1
    except CalendarAPIError as exc:
        logger.error("Calendar lookup failed: %s", exc)
        return 2

    print(f"Next available: {slot.start.strftime('%a %d %b %Y %H:%M')} – {slot.end.strftime('%H:%M %Z')}")
    print(f"  startISO: {slot.start.isoformat()}")
    print(f"  endISO:   {slot.end.isoformat()}")
    return 0


def _sign(args: argparse.Namespace) -> int:
    from src.config import RETELL_SIGNING_SECRET
    from src.services.signature import sign

    if not RETELL_SIGNING_SECRET:
        print("RETELL_SIGNING_SECRET is not set.", file=sys.stderr)
        return 2
    print(sign(args.payload.read_bytes(), RETELL_SIGNING_SECRET))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Woodland HVAC receptionist CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    find = commands.add_parser("find-slot", help="Find the next free appointment slot")
    find.add_argument("--date", type=date.fromisoformat, help="Preferred date (YYYY-MM-DD)")
    find.add_argument("--duration", type=int, default=None, help="Duration in minutes")
    find.set_defaults(handler=_find_slot)

    signer = commands.add_parser("sign", help="Print the webhook signature for a payload file")
    signer.add_argument("payload", type=Path)
    signer.set_defaults(handler=_sign)

    args = parser.parse_args(argv)

    load_dotenv()
    _configure_logging(debug=args.debug)

    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
