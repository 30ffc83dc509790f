"""FastAPI server for the Woodland HVAC receptionist backend.

Run with:
    uv run uvicorn src.server:app --reload --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import uvicorn
from fastapi import FastAPI, Request, Response

from src.api.routes import router, webhook_router
from src.config import SERVER_HOST, SERVER_PORT
from src.services.booking import BookingRecorder
from src.services.calendar_client import get_calendar_client
from src.services.sessions import SessionStore, SessionSweeper
from src.tools.dispatcher import ToolDispatcher
from src.tools.knowledge import MarkdownKnowledgeBase

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Wire the session store, calendar client and dispatcher once.

    The sweeper thread closes sessions whose ``call.ended`` webhook never
    arrived; it is stopped again on shutdown.
    """
    store = SessionStore()
    calendar = get_calendar_client()
    knowledge = MarkdownKnowledgeBase()

    application.state.sessions = store
    application.state.dispatcher = ToolDispatcher(
        store,
        BookingRecorder(store, calendar),
        calendar,
        knowledge,
    )
    sweeper = SessionSweeper(store)
    sweeper.start()
    logger.info("Receptionist backend ready (%d knowledge base entries)", len(knowledge))
    yield
    sweeper.stop()
    calendar.close()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Woodland HVAC Receptionist",
    description=(
        "Webhook backend for the Woodland HVAC voice receptionist. It "
        "answers questions, proposes appointment slots and books them."
    ),
    version="1.0.0",
    lifespan=lifespan,
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed in the ``X-Request-ID`` response header and prefixed
    to the webhook log lines for this request.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")
app.include_router(webhook_router)


@app.get("/healthz")
async def healthz():
    """Liveness probe for the container platform."""
    return {"status": "OK", "timestamp": datetime.now(UTC).isoformat()}


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Woodland HVAC Receptionist",
        "version": "1.0.0",
        "webhook": "/retell/webhook",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting receptionist server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "src.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
