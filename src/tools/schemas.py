"""Pydantic argument models for the tools exposed to the voice agent.

Wire names (``startISO``, ``durationMins``) are kept as aliases so the JSON
schemas published to the agent match what it sends back.
"""

from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.config import TIMEZONE


class _ToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class SearchKbArgs(_ToolArgs):
    query: str = Field(..., min_length=1, description="Search query for the knowledge base")


class ProposeSlotArgs(_ToolArgs):
    preferred_date: date | None = Field(
        None, alias="date", description="Preferred date in YYYY-MM-DD format (optional)",
    )
    duration_mins: int | None = Field(
        None, alias="durationMins", gt=0, le=24 * 60,
        description="Duration in minutes, defaults to 120",
    )

    @field_validator("preferred_date", mode="before")
    @classmethod
    def _blank_date_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class AppointmentArgs(_ToolArgs):
    name: str = Field(..., min_length=1, description="Customer full name")
    phone: str = Field(..., min_length=1, description="Customer phone number")
    address: str = Field(..., min_length=1, description="Customer address")
    issue: str = Field(..., min_length=1, description="Description of the HVAC issue")
    start: datetime = Field(..., alias="startISO", description="Start time in ISO format")
    end: datetime = Field(..., alias="endISO", description="End time in ISO format")

    @field_validator("start", "end")
    @classmethod
    def _assume_service_timezone(cls, value: datetime) -> datetime:
        """Naive times are wall-clock times in the service timezone."""
        if value.tzinfo is None:
            return value.replace(tzinfo=ZoneInfo(TIMEZONE))
        return value

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end <= self.start:
            raise ValueError("endISO must be after startISO")
        return self


class BookCalendarArgs(AppointmentArgs):
    pass


class ConfirmReadbackArgs(_ToolArgs):
    details: AppointmentArgs = Field(..., description="Confirmed appointment details")


# name → (description, argument model)
TOOL_SCHEMAS: dict[str, tuple[str, type[_ToolArgs]]] = {
    "search_kb": (
        "Search the knowledge base for answers to customer questions",
        SearchKbArgs,
    ),
    "propose_slot": (
        "Find and propose an available appointment time slot",
        ProposeSlotArgs,
    ),
    "book_calendar": (
        "Book the confirmed appointment in Google Calendar",
        BookCalendarArgs,
    ),
    "confirm_readback": (
        "Confirm appointment details with customer after reading them back",
        ConfirmReadbackArgs,
    ),
}
