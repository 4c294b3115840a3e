"""Mock data tools served to streaming requests and the MCP endpoint."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from config.settings import get_settings
from errors.exceptions import ToolError
from tools.registry import register_tool

logger = logging.getLogger(__name__)


@register_tool(
    name="get-data",
    description="Returns data (large response)",
    input_schema={
        "type": "object",
        "properties": {
            "size": {"type": "integer", "minimum": 0},
            "delay_ms": {"type": "integer", "minimum": 0},
            "fail": {"type": "boolean"},
        },
    },
)
async def get_data(
    size: int | None = None,
    delay_ms: int | None = None,
    fail: bool = False,
    **_: Any,
) -> list[dict[str, Any]]:
    """Return a JSON string of ``size`` characters after ``delay_ms``.

    Args:
        size: Payload length; defaults to ``tool_response_size``.
        delay_ms: Artificial latency; defaults to ``tool_delay_ms``.
        fail: Raise instead of returning, to exercise error paths.

    Returns:
        MCP content items: ``[{"type": "text", "text": ...}]``.
    """
    settings = get_settings()
    size = settings.tool_response_size if size is None else size
    delay_ms = settings.tool_delay_ms if delay_ms is None else delay_ms
    if size < 0:
        raise ToolError("get-data", f"size must be >= 0, got {size}")

    logger.info("Generating %dKB response (delay=%dms)", round(size / 1024), delay_ms)
    if delay_ms:
        await asyncio.sleep(delay_ms / 1000)
    if fail:
        raise ToolError("get-data", "failure requested by caller")

    return [{"type": "text", "text": json.dumps("x" * size)}]


@register_tool(
    name="echo",
    description="Echo back the given message",
    input_schema={
        "type": "object",
        "properties": {"message": {"type": "string"}},
        "required": ["message"],
    },
)
async def echo(message: str, **_: Any) -> list[dict[str, Any]]:
    return [{"type": "text", "text": message}]
