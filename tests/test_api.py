"""Tests for the FastAPI endpoints."""

from __future__ import annotations

import json
import time
from datetime import datetime
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from src.server import app
from src.services.booking import BookingRecorder
from src.services.calendar_client import BusyInterval
from src.services.signature import sign
from src.tools.dispatcher import ToolDispatcher

SECRET = "api-test-secret"
HEADER = "x-retell-signature"
PACIFIC = ZoneInfo("America/Los_Angeles")

BOOKING_ARGS = {
    "name": "Ana Diaz",
    "phone": "555-0100",
    "address": "12 Oak St, Woodland",
    "issue": "AC blowing warm air",
}


@pytest.fixture
def wired(monkeypatch, store, fake_calendar, fake_knowledge, now):
    """Attach a real store and dispatcher to app state (mirrors the lifespan)."""
    monkeypatch.setattr("src.config.RETELL_SIGNING_SECRET", SECRET)
    dispatcher = ToolDispatcher(
        store,
        BookingRecorder(store, fake_calendar),
        fake_calendar,
        fake_knowledge,
        clock=lambda: now,
    )
    app.state.sessions = store
    app.state.dispatcher = dispatcher
    yield dispatcher
    # Clean up
    app.state.sessions = None
    app.state.dispatcher = None


@pytest.fixture
def client(wired):
    """FastAPI test client with the store and dispatcher wired up."""
    return TestClient(app)


def _post(client: TestClient, payload: dict, *, signature: str | None = None):
    body = json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    headers[HEADER] = signature if signature is not None else sign(body, SECRET)
    return client.post("/retell/webhook", content=body, headers=headers)


def _event(name: str, call_id: str = "c1", **extra) -> dict:
    return {"event": name, "call": {"call_id": call_id}, **extra}


def _tool_call(tool_name: str, arguments: dict | str | None, call_id: str = "c1", tool_call_id: str = "t1") -> dict:
    return _event(
        "tool.call",
        call_id,
        tool_call={"tool_call_id": tool_call_id, "tool_name": tool_name, "arguments": arguments},
    )


# ── Service endpoints ────────────────────────────────────────────────


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "woodland-hvac-receptionist"

    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json()["status"] == "OK"
        assert "timestamp" in response.json()


class TestRootEndpoint:
    def test_root_returns_service_info(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "Woodland HVAC Receptionist"
        assert data["webhook"] == "/retell/webhook"


class TestAgentEndpoint:
    def test_lists_all_tools(self, client):
        response = client.get("/api/agent")
        assert response.status_code == 200
        data = response.json()
        names = [tool["name"] for tool in data["tools"]]
        assert names == ["search_kb", "propose_slot", "book_calendar", "confirm_readback"]
        assert "Woodland HVAC Services" in data["system_prompt"]

    def test_tool_parameters_use_wire_names(self, client):
        tools = {tool["name"]: tool for tool in client.get("/api/agent").json()["tools"]}
        booking = tools["book_calendar"]["parameters"]
        assert {"startISO", "endISO"} <= set(booking["properties"])
        assert "durationMins" in tools["propose_slot"]["parameters"]["properties"]


class TestRequestId:
    def test_generates_request_id(self, client):
        response = client.get("/api/health")
        assert response.headers.get("X-Request-ID")

    def test_echoes_incoming_request_id(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"


# ── Webhook: authentication and parsing ──────────────────────────────


class TestWebhookAuthentication:
    def test_missing_signature_is_401(self, client, store):
        body = json.dumps(_event("call.started")).encode()
        response = client.post("/retell/webhook", content=body)
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}
        assert store.get("c1") is None

    def test_wrong_signature_is_401(self, client, store):
        response = _post(client, _event("call.started"), signature="0" * 64)
        assert response.status_code == 401
        assert store.get("c1") is None

    def test_signature_over_other_body_is_401(self, client):
        other = sign(b'{"event":"call.ended"}', SECRET)
        response = _post(client, _event("call.started"), signature=other)
        assert response.status_code == 401

    def test_unset_secret_rejects_everything(self, client, monkeypatch):
        monkeypatch.setattr("src.config.RETELL_SIGNING_SECRET", None)
        response = _post(client, _event("call.started"))
        assert response.status_code == 401

    def test_tool_call_with_bad_signature_does_not_dispatch(self, client, fake_calendar):
        response = _post(client, _tool_call("propose_slot", {}), signature="bad")
        assert response.status_code == 401
        assert fake_calendar.queries == []


class TestWebhookParsing:
    def test_invalid_json_is_400(self, client):
        body = b"not json"
        response = client.post("/retell/webhook", content=body, headers={HEADER: sign(body, SECRET)})
        assert response.status_code == 400

    def test_missing_call_is_400(self, client):
        response = _post(client, {"event": "call.started"})
        assert response.status_code == 400

    def test_empty_call_id_is_400(self, client):
        response = _post(client, _event("call.started", call_id=""))
        assert response.status_code == 400

    def test_unknown_event_is_acknowledged(self, client):
        response = _post(client, _event("call.analyzed"))
        assert response.status_code == 204


# ── Webhook: call lifecycle ──────────────────────────────────────────


class TestWebhookLifecycle:
    def test_call_started_creates_session(self, client, store):
        response = _post(client, _event("call.started"))
        assert response.status_code == 204
        assert store.get("c1") is not None

    def test_transcript_delta_appends(self, client, store):
        _post(client, _event("call.started"))
        _post(client, _event("transcript.delta", transcript={"delta": "Hi, ", "role": "user"}))
        response = _post(client, _event("transcript.delta", transcript={"delta": "my AC is out."}))
        assert response.status_code == 204
        assert store.get("c1").transcript == "Hi, my AC is out."

    def test_transcript_for_unknown_call_is_ignored(self, client, store):
        response = _post(client, _event("transcript.delta", "ghost", transcript={"delta": "hello"}))
        assert response.status_code == 204
        assert store.get("ghost") is None

    def test_call_ended_removes_session(self, client, store):
        _post(client, _event("call.started"))
        response = _post(client, _event("call.ended"))
        assert response.status_code == 204
        assert store.get("c1") is None

    def test_call_ended_twice_is_harmless(self, client):
        _post(client, _event("call.started"))
        _post(client, _event("call.ended"))
        assert _post(client, _event("call.ended")).status_code == 204


# ── Webhook: tool calls ──────────────────────────────────────────────


class TestWebhookToolCalls:
    def test_response_echoes_tool_call_id(self, client):
        response = _post(client, _tool_call("propose_slot", {}, tool_call_id="tc-42"))
        assert response.status_code == 200
        data = response.json()
        assert data["tool_call_id"] == "tc-42"
        assert data["tool_result"] == {
            "startISO": "2026-10-14T09:00:00-07:00",
            "endISO": "2026-10-14T11:00:00-07:00",
        }

    def test_unknown_tool_is_enveloped(self, client):
        response = _post(client, _tool_call("transfer_call", {}))
        assert response.status_code == 200
        assert response.json()["tool_result"] == {
            "error": "Unknown tool: transfer_call",
            "error_type": "unknown_tool",
        }

    def test_validation_error_is_enveloped(self, client):
        response = _post(client, _tool_call("book_calendar", {"name": "Ana"}))
        assert response.status_code == 200
        assert response.json()["tool_result"]["error_type"] == "validation"

    def test_null_arguments_are_treated_as_empty(self, client):
        response = _post(client, _tool_call("propose_slot", None, tool_call_id="t1"))
        assert response.status_code == 200
        data = response.json()
        assert data["tool_call_id"] == "t1"
        assert data["tool_result"]["startISO"] == "2026-10-14T09:00:00-07:00"

    def test_non_object_arguments_are_enveloped(self, client):
        response = _post(client, _tool_call("propose_slot", "x", tool_call_id="t1"))
        assert response.status_code == 200
        data = response.json()
        assert data["tool_call_id"] == "t1"
        assert data["tool_result"]["error_type"] == "validation"

    def test_tool_call_without_payload_is_acknowledged(self, client):
        response = _post(client, _event("tool.call"))
        assert response.status_code == 204

    def test_booking_conversation(self, client, store, fake_calendar):
        fake_calendar.busy = [
            BusyInterval(
                start=datetime(2026, 10, 14, 9, 0, tzinfo=PACIFIC),
                end=datetime(2026, 10, 14, 11, 0, tzinfo=PACIFIC),
            ),
        ]
        assert _post(client, _event("call.started")).status_code == 204

        proposed = _post(client, _tool_call("propose_slot", {})).json()["tool_result"]
        assert proposed == {
            "startISO": "2026-10-14T11:00:00-07:00",
            "endISO": "2026-10-14T13:00:00-07:00",
        }

        arguments = {**BOOKING_ARGS, **proposed}
        readback = _post(client, _tool_call("confirm_readback", {"details": arguments}))
        assert readback.json()["tool_result"] == {"ok": True}

        first = _post(client, _tool_call("book_calendar", arguments, tool_call_id="t2"))
        second = _post(client, _tool_call("book_calendar", arguments, tool_call_id="t3"))

        assert first.json()["tool_result"]["status"] == "booked"
        assert first.json()["tool_result"] == second.json()["tool_result"]
        assert len(fake_calendar.created) == 1
        assert len(store.get("c1").bookings) == 1

    def test_slow_tool_times_out(self, client, monkeypatch):
        monkeypatch.setattr("src.config.TOOL_TIMEOUT_SECONDS", 0.05)
        slow = MagicMock()
        slow.dispatch.side_effect = lambda *args: time.sleep(0.5) or {"ok": True}
        app.state.dispatcher = slow

        response = _post(client, _tool_call("confirm_readback", {}))

        assert response.status_code == 200
        assert response.json()["tool_result"]["error_type"] == "external"


class TestStartup:
    def test_missing_state_is_503(self, client):
        app.state.sessions = None
        response = _post(client, _event("call.started"))
        assert response.status_code == 503