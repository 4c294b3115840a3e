"""Message producer — the per-connection handler that emits wire events.

The session router builds one :class:`MessageProducer` for every accepted
connection.  All of its mutable state (block index sequencer, emitted-event
count, fault plan) lives on that instance, so nothing it does can reach
another connection's channel.

For each request the producer plays a tool-use turn::

    message_start
    [thinking block]
    (mcp_tool_use block -> tool call -> mcp_tool_result block) x tool_calls
    text block "Data received"
    message_delta(stop_reason=end_turn) -> message_stop

Every tool result starts with a ``[<probe_id>:<call>]`` marker so a client
can tell whether the content it received was produced for its own request.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from config.settings import Settings, get_settings
from errors.exceptions import ChannelClosed
from models.errors import classify_producer_error
from models.request import FaultPlan, InvocationRequest
from models.wire_events import (
    BlockDeltaEvent,
    BlockStartEvent,
    BlockStopEvent,
    ErrorEvent,
    ErrorInfo,
    InputJsonDelta,
    MessageDeltaEvent,
    MessageHeader,
    MessageStartEvent,
    MessageStopEvent,
    SignatureDelta,
    StopInfo,
    TextDelta,
    ThinkingDelta,
    WireEvent,
)
from services.session_router import ProcessingContext, SessionRouter
from tools.registry import invoke_tool

logger = logging.getLogger(__name__)

FINAL_TEXT = "Data received"


def result_marker(probe_id: str, call: int) -> str:
    """Prefix identifying which request and call a tool result belongs to."""
    return f"[{probe_id}:{call}]"


class _SilentTruncation(Exception):
    """Internal signal: stop producing and close without a terminal event."""


class MessageProducer:
    """Produce the event sequence for one connection's request."""

    def __init__(
        self,
        context: ProcessingContext,
        router: SessionRouter,
        settings: Settings | None = None,
    ) -> None:
        self._context = context
        self._router = router
        self._settings = settings or get_settings()
        self._next_index = 0
        self._emitted = 0
        self._output_chars = 0
        self._faults = FaultPlan()

    @property
    def emitted(self) -> int:
        return self._emitted

    async def run(self, request: InvocationRequest) -> None:
        """Emit the whole stream, then close the connection.

        ``ChannelClosed`` (the client went away) stops production; any other
        failure is reported with an ``error`` event before closing.
        """
        self._faults = request.faults
        probe_id = request.probe_id or self._context.label
        reason = "completed"
        try:
            await self._produce(request, probe_id)
        except _SilentTruncation as exc:
            reason = "truncated"
            logger.warning(
                "Connection %s closed without terminal event after %d events (%s)",
                self._context.connection_id,
                self._emitted,
                exc,
            )
        except ChannelClosed:
            reason = "client_disconnect"
            logger.warning(
                "Connection %s went away after %d events",
                self._context.connection_id,
                self._emitted,
            )
        except asyncio.CancelledError:
            reason = "cancelled"
            raise
        except Exception as exc:
            reason = "error"
            logger.error(
                "Producer failed on connection %s: %s", self._context.connection_id, exc
            )
            await self._emit_error(exc)
        finally:
            await self._router.close_connection(self._context, reason=reason)

    # ── Stream shape ────────────────────────────────────────

    async def _produce(self, request: InvocationRequest, probe_id: str) -> None:
        input_tokens = max(1, sum(len(str(m.get("content", ""))) for m in request.messages) // 4)
        await self._emit(
            MessageStartEvent(
                message=MessageHeader(
                    id=f"msg_{self._context.connection_id}",
                    model=request.model,
                    usage={"input_tokens": input_tokens, "output_tokens": 0},
                )
            )
        )

        if request.thinking_enabled:
            index = await self._start_block({"type": "thinking", "thinking": "", "signature": ""})
            await self._delta(index, ThinkingDelta(thinking=f"Calling {request.tool_name}."))
            await self._delta(index, SignatureDelta(signature=f"sig-{probe_id}"))
            await self._stop_block(index)

        calls = request.tool_calls
        if calls is None:
            calls = self._settings.tool_calls_per_request
        for call in range(1, calls + 1):
            await self._tool_round(request, probe_id, call)

        index = await self._start_block({"type": "text", "text": ""})
        await self._delta(index, TextDelta(text=FINAL_TEXT))
        await self._stop_block(index)

        await self._emit(
            MessageDeltaEvent(
                delta=StopInfo(stop_reason="end_turn"),
                usage={"output_tokens": max(1, self._output_chars // 4)},
            )
        )
        await self._emit(MessageStopEvent())

    async def _tool_round(self, request: InvocationRequest, probe_id: str, call: int) -> None:
        tool_use_id = f"mcptoolu_{probe_id}_{call}"
        index = await self._start_block({
            "type": "mcp_tool_use",
            "id": tool_use_id,
            "name": request.tool_name,
            "server_name": request.server_name,
            "input": {},
        })
        await self._delta(
            index, InputJsonDelta(partial_json=json.dumps({"probe_id": probe_id, "call": call}))
        )
        await self._stop_block(index)

        arguments: dict[str, Any] = {
            "size": request.size_bytes,
            "delay_ms": request.delay_ms,
            "fail": self._faults.fail_tool,
            "message": f"probe {probe_id} call {call}",
        }
        content = await self._invoke(
            request.tool_name, {k: v for k, v in arguments.items() if v is not None}
        )

        text = result_marker(probe_id, call) + "".join(
            str(item.get("text", "")) for item in content if item.get("type") == "text"
        )
        index = await self._start_block({
            "type": "mcp_tool_result",
            "tool_use_id": tool_use_id,
            "is_error": False,
            "content": [],
        })
        size = max(1, self._settings.result_chunk_size)
        for offset in range(0, len(text), size):
            await self._delta(index, TextDelta(text=text[offset:offset + size]))
        await self._stop_block(index)

    async def _invoke(self, tool_name: str, arguments: dict[str, Any]) -> list[dict[str, Any]]:
        timeout = self._faults.tool_timeout_s or self._settings.tool_timeout_s
        try:
            return await asyncio.wait_for(invoke_tool(tool_name, arguments), timeout=timeout)
        except asyncio.TimeoutError:
            if self._faults.silent_timeout:
                raise _SilentTruncation(f"{tool_name} timed out after {timeout}s") from None
            raise asyncio.TimeoutError(f"{tool_name} timed out after {timeout}s") from None

    # ── Emission ────────────────────────────────────────────

    async def _start_block(self, content_block: dict[str, Any]) -> int:
        index = self._next_index
        self._next_index += 1
        await self._emit(BlockStartEvent(index=index, content_block=content_block))
        return index

    async def _delta(self, index: int, delta: Any) -> None:
        fragment = getattr(delta, "text", None) or getattr(delta, "thinking", None) or ""
        self._output_chars += len(fragment)
        await self._emit(BlockDeltaEvent(index=index, delta=delta))

    async def _stop_block(self, index: int) -> None:
        await self._emit(BlockStopEvent(index=index))

    async def _emit(self, event: WireEvent) -> None:
        limit = self._faults.truncate_after_events
        if limit is not None and self._emitted >= limit:
            raise _SilentTruncation(f"truncate_after_events={limit}")
        await self._router.dispatch(self._context, event)
        self._emitted += 1

    async def _emit_error(self, exc: BaseException) -> None:
        payload = classify_producer_error(exc)
        try:
            await self._router.dispatch(self._context, ErrorEvent(error=ErrorInfo(**payload)))
        except ChannelClosed:
            logger.warning(
                "Could not report error to connection %s: already closed",
                self._context.connection_id,
            )


def build_session_router(settings: Settings | None = None) -> SessionRouter:
    """Create a router whose contexts each get a fresh :class:`MessageProducer`."""
    settings = settings or get_settings()

    def producer_factory(context: ProcessingContext) -> MessageProducer:
        return MessageProducer(context, session_router, settings)

    session_router = SessionRouter(producer_factory, max_connections=settings.max_connections)
    return session_router
