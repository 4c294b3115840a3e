"""Live event source — stream a real tool-use turn from the Anthropic API.

Uses the beta MCP connector: the API itself calls the tool on the MCP server
at ``mcp_url`` and streams ``mcp_tool_use`` / ``mcp_tool_result`` blocks back.
Each raw SDK event is converted into our typed :data:`~models.wire_events.WireEvent`
so the same assembler and probe logic apply to live and mock streams.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import anthropic

from config.settings import Settings, get_settings
from models.wire_events import PING, ErrorEvent, ErrorInfo, WireEvent, parse_wire_event

logger = logging.getLogger(__name__)

MCP_BETAS = ["mcp-client-2025-04-04", "interleaved-thinking-2025-05-14"]

SYSTEM_PROMPT = (
    "You are testing MCP tool responses. Call get-data to retrieve the test data. "
    'After it completes, say "Data received" and stop.'
)
USER_PROMPT = (
    'Call the get-data tool to retrieve the test data. After it completes, say "Data received" '
    "and stop. Do not make any other tool calls."
)


def build_live_request(settings: Settings | None = None, tool_name: str = "get-data") -> dict[str, Any]:
    """Keyword arguments for ``client.beta.messages.create``."""
    s = settings or get_settings()
    return {
        "model": s.live_model,
        "max_tokens": s.live_max_tokens,
        "stream": True,
        "betas": MCP_BETAS,
        "thinking": {"type": "enabled", "budget_tokens": s.thinking_budget_tokens},
        "system": [{"type": "text", "text": SYSTEM_PROMPT}],
        "messages": [{"role": "user", "content": USER_PROMPT}],
        "mcp_servers": [
            {
                "type": "url",
                "url": f"{s.mcp_url.rstrip('/')}/mcp",
                "name": "Test MCP",
                "tool_configuration": {"allowed_tools": [tool_name]},
            }
        ],
    }


def convert_sdk_event(raw: dict[str, Any]) -> WireEvent | None:
    """Convert one dumped SDK event; ``None`` for keep-alives."""
    kind = raw.get("type")
    if kind == PING:
        return None
    data = dict(raw)
    # Only the integer counters are kept; nested usage objects are not folded.
    if isinstance(data.get("usage"), dict):
        data["usage"] = _numeric(data["usage"])
    if kind == "message_start" and isinstance(data.get("message"), dict):
        message = dict(data["message"])
        message["usage"] = _numeric(message.get("usage") or {})
        data["message"] = message
    return parse_wire_event(kind, data)


def _numeric(usage: dict[str, Any]) -> dict[str, int]:
    return {k: v for k, v in usage.items() if isinstance(v, int) and not isinstance(v, bool)}


async def stream_live_events(
    client: anthropic.AsyncAnthropic,
    settings: Settings | None = None,
) -> AsyncIterator[WireEvent]:
    """Yield the live stream's events in arrival order.

    An error status the API returns, whether when the request starts or
    mid-stream, surfaces from the SDK as ``APIStatusError``; it is turned back
    into an ``error`` wire event so the assembler classifies it as a remote
    error.
    """
    kwargs = build_live_request(settings)
    stream = None
    try:
        stream = await client.beta.messages.create(**kwargs)
        async for sdk_event in stream:
            event = convert_sdk_event(sdk_event.model_dump(mode="json", exclude_none=True))
            if event is not None:
                yield event
    except anthropic.APIStatusError as exc:
        error = exc.body.get("error", {}) if isinstance(exc.body, dict) else {}
        logger.warning("Live stream reported error: %s", exc)
        yield ErrorEvent(
            error=ErrorInfo(
                type=str(error.get("type", "api_error")),
                message=str(error.get("message", exc.message)),
            )
        )
    finally:
        if stream is not None:
            await stream.close()
