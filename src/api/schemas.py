"""Pydantic schemas for the webhook and service endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CallInfo(BaseModel):
    call_id: str = Field(..., min_length=1)
    agent_id: str | None = None
    from_number: str | None = None
    to_number: str | None = None
    start_timestamp: int | None = None
    end_timestamp: int | None = None


class TranscriptDelta(BaseModel):
    delta: str | None = None
    role: str | None = None  # "user" or "agent"
    timestamp: int | None = None


class ToolCall(BaseModel):
    tool_call_id: str
    tool_name: str
    # Validated per tool by the dispatcher
    arguments: Any = None


class WebhookEvent(BaseModel):
    """Inbound Retell event.

    ``event`` is a plain string so that event types added by the platform
    later are acknowledged instead of rejected.
    """

    event: str
    call: CallInfo
    transcript: TranscriptDelta | None = None
    tool_call: ToolCall | None = None


class ToolCallResponse(BaseModel):
    tool_call_id: str
    tool_result: dict[str, Any]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "woodland-hvac-receptionist"


class AgentConfigResponse(BaseModel):
    system_prompt: str
    tools: list[dict[str, Any]]
