"""Woodland HVAC receptionist backend: the webhook service behind a voice agent.

Architecture Overview
=====================

A Retell voice agent handles the phone call; this service receives its
signed webhook events and does everything that needs state or a calendar:

    inbound event → signature check → event-type switch
        call.started / transcript.delta / call.ended → SessionStore
        tool.call → ToolDispatcher → (knowledge base | slot search | booking)
                  → ToolCallResponse

Key Design Decisions
--------------------
- **Raw-body authentication**: the HMAC-SHA256 signature is verified over the
  untouched request bytes before any JSON parsing, using a constant-time
  comparison.
- **Deterministic slot search**: ``find_slot`` receives "now", the timezone
  and opening hours as arguments, and only talks to the calendar through the
  ``BusyIntervalSource`` protocol.
- **Idempotent booking**: each call's booking ledger is keyed by
  (start, end), and the per-call lock is held across check, insert and
  record, so agent retries never create a second calendar event.
- **Uniform tool results**: the dispatcher turns every failure into an
  ``{"error", "error_type"}`` envelope the agent can speak to the caller.
- **Ephemeral sessions**: in-memory only; the calendar is the durable record.
  A background sweeper drops sessions older than one hour.

Package Structure
-----------------
- ``src/config.py`` — Centralized configuration from environment variables
- ``src/prompts.py`` — Voice-agent system prompt and tool definitions
- ``src/server.py`` — FastAPI application
- ``src/main.py`` — Developer CLI (slot lookup, payload signing)
- ``src/services/`` — Signature check, sessions, slot search, booking, Google Calendar client
- ``src/tools/`` — Tool argument schemas, dispatcher, knowledge base
- ``src/api/`` — FastAPI routes and Pydantic schemas
"""
