"""Messages API — mock streaming endpoint backed by the session router.

Endpoints:
- ``POST /v1/messages`` with ``stream: true``  — SSE ``event:`` / ``data:`` records
- ``POST /v1/messages`` with ``stream: false`` — the assembled message as JSON

Every request is one connection: the router allocates a context with its own
producer, the producer runs as a task, and this module only copies the
context's channel onto the HTTP response.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from starlette.responses import StreamingResponse

from config.settings import get_settings
from errors.exceptions import RemoteStreamError, RouterAtCapacity, StreamAssemblyError
from models.request import InvocationRequest
from services.assembler import StreamAssembler
from services.message_producer import build_session_router
from services.session_router import ProcessingContext, SessionRouter
from services.sse_decoder import encode_event, encode_ping

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"])

_session_router: SessionRouter | None = None


def get_session_router() -> SessionRouter:
    """Process-wide router; the live-connection table is its only shared state."""
    global _session_router
    if _session_router is None:
        _session_router = build_session_router()
    return _session_router


@router.post("/v1/messages")
async def create_message(
    req: InvocationRequest,
    sessions: SessionRouter = Depends(get_session_router),
):
    """Run one mock tool-use turn and stream (or return) the message."""
    try:
        context = sessions.accept_connection(label=req.probe_id)
    except RouterAtCapacity as exc:
        raise HTTPException(
            status_code=503,
            detail=f"Server busy: {exc}. Please retry.",
            headers={"Retry-After": "5"},
        ) from exc

    sessions.attach_task(context, asyncio.create_task(context.handler.run(req)))
    headers = {"x-connection-id": context.connection_id}

    if not req.stream:
        return await _collect_message(sessions, context, headers)

    return StreamingResponse(
        _event_stream(sessions, context),
        media_type="text/event-stream",
        headers={**headers, "Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def _event_stream(
    sessions: SessionRouter,
    context: ProcessingContext,
) -> AsyncGenerator[str, None]:
    """Copy the context's channel onto the response, with idle heartbeats."""
    heartbeat = get_settings().heartbeat_interval
    try:
        while True:
            try:
                event = await sessions.next_event(context, timeout=heartbeat)
            except asyncio.TimeoutError:
                yield encode_ping()
                continue
            if event is None:
                break
            yield encode_event(event)
    finally:
        # No-op when the producer already closed the connection.
        await sessions.close_connection(context, reason="client_disconnect")


async def _collect_message(
    sessions: SessionRouter,
    context: ProcessingContext,
    headers: dict[str, str],
) -> JSONResponse:
    """Fold the context's events through an assembler and return the result."""
    assembler = StreamAssembler()
    try:
        async for event in sessions.iter_events(context):
            assembler.consume(event)
        assembler.end_of_stream()
        message = assembler.finalize()
    except RemoteStreamError as exc:
        return JSONResponse(
            status_code=500,
            content={"type": "error", "error": {"type": exc.error_type, "message": exc.error_message}},
            headers=headers,
        )
    except StreamAssemblyError as exc:
        logger.error("Connection %s produced no final message: %s", context.connection_id, exc)
        return JSONResponse(
            status_code=502,
            content={"type": "error", "error": {"type": exc.reason.value, "message": str(exc)}},
            headers=headers,
        )
    finally:
        await sessions.close_connection(context, reason="collected")

    return JSONResponse(content=message.to_wire(), headers=headers)
