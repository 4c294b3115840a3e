"""FastAPI entry point for the stream completion probe service."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import get_settings
from services.middleware import RequestIdMiddleware, configure_logging

settings = get_settings()
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the endpoints on startup; close live connections on shutdown."""
    logger.info("%s v%s listening on port %d", settings.mcp_server_name, settings.mcp_server_version, settings.service_port)
    logger.info("MCP endpoint: http://localhost:%d/mcp", settings.service_port)
    logger.info("Messages endpoint: http://localhost:%d/v1/messages", settings.service_port)
    logger.info("Tool response size: %d bytes", settings.tool_response_size)

    yield

    closed = await get_session_router().close_all(reason="shutdown")
    if closed:
        logger.info("Closed %d live connections on shutdown", closed)


app = FastAPI(
    title="Stream Completion Probe",
    description="Mock tool-use streaming server and assembler for detecting incomplete streamed responses",
    version="1.0.0",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ─────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
    expose_headers=["Mcp-Session-Id", "x-connection-id", "x-request-id"],
)
app.add_middleware(RequestIdMiddleware)

# ── Populate tool registry (must happen before router import) ──
import tools  # noqa: E402, F401  — registers tools via @register_tool

# ── Register routers ────────────────────────────────────────
from api.health import router as health_router  # noqa: E402
from api.mcp import router as mcp_router  # noqa: E402
from api.messages import get_session_router, router as messages_router  # noqa: E402

app.include_router(health_router)
app.include_router(mcp_router)
app.include_router(messages_router)


if __name__ == "__main__":
    if settings.debug:
        # Development: single worker with reload
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.service_port,
            reload=True,
        )
    else:
        # Production: gunicorn main:app -c deploy/gunicorn.conf.py
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.service_port,
            timeout_keep_alive=120,
        )
