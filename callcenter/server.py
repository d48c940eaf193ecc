"""FastAPI server for the City General call-center router.

Run with:
    uvicorn callcenter.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from callcenter import config
from callcenter.api.routes import router
from callcenter.dispatcher import create_dispatcher
from callcenter.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "City General Call Center"
API_VERSION = "1.0.0"


# ── Lifespan: build the dispatcher, flush metrics on shutdown ────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the dispatcher once and keep it in app state."""
    if not config.ANTHROPIC_API_KEY:
        logger.warning("Starting without an LLM key: every reply will come from canned text")
    application.state.dispatcher = create_dispatcher()
    logger.info(
        "Dispatcher ready (router=%s, handlers=%s, session ttl=%ss)",
        config.ROUTER_MODEL_NAME, config.MODEL_NAME, config.SESSION_TTL_SECONDS,
    )
    try:
        yield
    finally:
        sent = metrics.close()
        logger.info("Shutdown: flushed %d metrics", sent)


app = FastAPI(
    title=SERVICE_NAME,
    description=(
        "Multi-agent hospital call-center assistant: doctor appointments, "
        "staff HR questions and general inquiries."
    ),
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


# ── Request-ID and timing middleware ─────────────────────────────────
@app.middleware("http")
async def trace_request(request: Request, call_next) -> Response:
    """Tag each request with ``X-Request-ID`` and log its status and duration."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "[%s] %s %s -> %d in %.0fms",
        request_id, request.method, request.url.path, response.status_code, elapsed_ms,
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Service name and the main entry points."""
    return {
        "service": SERVICE_NAME,
        "version": API_VERSION,
        "docs": "/docs",
        "endpoints": {
            "health": "/api/health",
            "chat": "/api/chat",
            "appointments": "/api/appointments",
            "agents": "/api/agents",
        },
    }


if __name__ == "__main__":
    logger.info("Starting call-center API server on %s:%d", config.SERVER_HOST, config.SERVER_PORT)
    uvicorn.run("callcenter.server:app", host=config.SERVER_HOST, port=config.SERVER_PORT, reload=True)
