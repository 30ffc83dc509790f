"""Centralized configuration for the Woodland HVAC receptionist backend.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/woodland-hvac/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/woodland-hvac/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _optional_env(name: str) -> str | None:
    """Return a config value from env-var or SSM, or ``None`` if unset."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _optional_env(name)
    if value:
        return value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /woodland-hvac/{name} (AWS)."
    )


# ── Retell (voice agent platform) ───────────────────────────────────
# Optional at start-up: without it every webhook fails verification.
RETELL_SIGNING_SECRET: str | None = _optional_env("RETELL_SIGNING_SECRET")
RETELL_SIGNATURE_HEADER: str = "x-retell-signature"

# ── Google Calendar ─────────────────────────────────────────────────
GOOGLE_CLIENT_ID: str = _require_env("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET: str = _require_env("GOOGLE_CLIENT_SECRET")
GOOGLE_REFRESH_TOKEN: str = _require_env("GOOGLE_REFRESH_TOKEN")
GOOGLE_CALENDAR_ID: str = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GOOGLE_CALENDAR_BASE_URL: str = "https://www.googleapis.com/calendar/v3"
GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"

# ── Business rules ──────────────────────────────────────────────────
COMPANY_NAME: str = "Woodland HVAC Services"
TIMEZONE: str = os.getenv("SERVICE_TIMEZONE", "America/Los_Angeles")
SERVICE_HOURS_START: str = "09:00"
SERVICE_HOURS_END: str = "17:00"
CLOSED_WEEKDAY: int = 6  # Sunday (datetime.weekday())
DEFAULT_APPT_DURATION_MINS: int = 120
SEARCH_HORIZON_DAYS: int = 7

# ── Sessions & timeouts ─────────────────────────────────────────────
SESSION_TTL_SECONDS: int = 60 * 60
SESSION_SWEEP_INTERVAL_SECONDS: int = int(os.getenv("SESSION_SWEEP_INTERVAL_SECONDS", "3600"))
TOOL_TIMEOUT_SECONDS: float = float(os.getenv("TOOL_TIMEOUT_SECONDS", "20"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
# Cloud Run injects PORT; SERVER_PORT wins for local overrides.
SERVER_PORT: int = int(os.getenv("SERVER_PORT", os.getenv("PORT", "8080")))
