"""FastAPI route definitions: the Retell webhook and service endpoints."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from src import config
from src.api.schemas import (
    AgentConfigResponse,
    HealthResponse,
    ToolCall,
    ToolCallResponse,
    WebhookEvent,
)
from src.prompts import get_system_prompt, get_tool_definitions
from src.services.sessions import SessionStore
from src.services.signature import verify_signature
from src.tools.dispatcher import EXTERNAL, ToolDispatcher, error_envelope

logger = logging.getLogger(__name__)

router = APIRouter()
webhook_router = APIRouter()


def _get_state(request: Request, name: str):
    """Retrieve a shared component that the lifespan put on app state."""
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=503,
            detail="The service is still starting up. Please try again in a moment.",
        )
    return component


# ── Service endpoints ────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.get("/agent", response_model=AgentConfigResponse)
async def agent_config():
    """System prompt and tool schemas for configuring the voice agent."""
    return AgentConfigResponse(system_prompt=get_system_prompt(), tools=get_tool_definitions())


# ── Retell webhook ───────────────────────────────────────────────────


async def _run_tool(dispatcher: ToolDispatcher, tool_call: ToolCall, call_id: str) -> dict:
    """Dispatch off the event loop, bounded by ``TOOL_TIMEOUT_SECONDS``.

    On timeout the worker thread is left to finish on its own; a booking it
    completes is still recorded, so the agent's retry gets the same link.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(
                dispatcher.dispatch, tool_call.tool_name, tool_call.arguments, call_id,
            ),
            timeout=config.TOOL_TIMEOUT_SECONDS,
        )
    except TimeoutError:
        logger.error(
            "[%s] %s timed out after %.0fs",
            call_id, tool_call.tool_name, config.TOOL_TIMEOUT_SECONDS,
        )
        return error_envelope("The request timed out. Please try again.", EXTERNAL)


@webhook_router.post("/retell/webhook")
async def retell_webhook(request: Request):
    """Handle one signed Retell event.

    The signature is checked against the raw body *before* anything is
    parsed.  Tool calls are answered with a ``ToolCallResponse``; every
    other event gets an empty 204.
    """
    raw_body = await request.body()
    request_id = getattr(request.state, "request_id", "?")

    signature = request.headers.get(config.RETELL_SIGNATURE_HEADER)
    if not verify_signature(raw_body, signature, config.RETELL_SIGNING_SECRET):
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    try:
        event = WebhookEvent.model_validate_json(raw_body)
    except ValidationError:
        logger.warning("[%s] Malformed webhook payload", request_id)
        return JSONResponse(status_code=400, content={"error": "Malformed event"})

    store: SessionStore = _get_state(request, "sessions")
    call_id = event.call.call_id
    logger.info("[%s] Webhook event %s for call %s", request_id, event.event, call_id)

    if event.event == "call.started":
        store.init(call_id)

    elif event.event == "transcript.delta":
        if event.transcript and event.transcript.delta:
            store.append_transcript(call_id, event.transcript.delta)

    elif event.event == "tool.call":
        if event.tool_call is not None:
            dispatcher: ToolDispatcher = _get_state(request, "dispatcher")
            result = await _run_tool(dispatcher, event.tool_call, call_id)
            return ToolCallResponse(tool_call_id=event.tool_call.tool_call_id, tool_result=result)
        logger.warning("[%s] tool.call event without a tool_call payload", request_id)

    elif event.event == "call.ended":
        store.close(call_id)

    else:
        logger.info("[%s] Unhandled event type: %s", request_id, event.event)

    return Response(status_code=204)
