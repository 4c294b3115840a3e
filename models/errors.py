"""Structured reason codes and error payload formatting.

Three reason codes separate the ways an assembly can fail; the probe adds a
few verdicts of its own on top of them.  Server-side exceptions are mapped to
the payload of an ``error`` wire event with :func:`classify_producer_error`.

Error event ``message`` fields follow the format::

    {ERROR_CODE}: {tool_name} — {human_readable_detail}
"""

from __future__ import annotations

import asyncio
from enum import Enum


class FailureReason(str, Enum):
    """Why an assembly did not produce a final message."""

    PROTOCOL_VIOLATION = "protocol_violation"
    INCOMPLETE_STREAM = "incomplete_stream"
    REMOTE_ERROR = "remote_error"


class ProbeVerdict(str, Enum):
    """Outcome of one probe run, as reported by the drivers."""

    COMPLETE = "complete"
    PROTOCOL_VIOLATION = "protocol_violation"
    INCOMPLETE_STREAM = "incomplete_stream"
    REMOTE_ERROR = "remote_error"
    CROSS_TALK = "cross_talk"
    TRANSPORT_ERROR = "transport_error"


class ErrorCode(str, Enum):
    """Codes used in the ``message`` of error events."""

    TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
    TOOL_TIMEOUT = "TOOL_TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class JsonRpcCode(int, Enum):
    """JSON-RPC 2.0 error codes used by the MCP endpoint."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


def format_tool_error(tool_name: str, detail: str) -> str:
    """``TOOL_EXECUTION_FAILED: {tool_name} — {detail}``"""
    return f"{ErrorCode.TOOL_EXECUTION_FAILED.value}: {tool_name} — {detail}"


def format_error(code: ErrorCode, detail: str) -> str:
    """``{ERROR_CODE}: {detail}``"""
    return f"{code.value}: {detail}"


def classify_producer_error(exc: BaseException) -> dict[str, str]:
    """Map an exception raised while producing a stream to an error payload.

    Returns:
        A dict with ``type`` and ``message`` keys, ready to be used as the
        ``error`` field of an ``error`` wire event.
    """
    # Imported lazily: errors.exceptions depends on this module.
    from errors.exceptions import ToolError

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return {
            "type": "timeout_error",
            "message": format_error(ErrorCode.TOOL_TIMEOUT, str(exc) or "tool call timed out"),
        }
    if isinstance(exc, ToolError):
        return {"type": "api_error", "message": format_tool_error(exc.tool_name, str(exc))}
    return {"type": "api_error", "message": format_error(ErrorCode.INTERNAL_ERROR, str(exc))}
