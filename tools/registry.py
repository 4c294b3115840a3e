"""Single-source registry for the mock tools the server can invoke.

Tools are plain async functions registered with ``@register_tool`` and
looked up by name.  The registry is filled at import time and only read
afterwards; tools keep no per-request state, so one registry serves every
connection.

Design:
- Each tool declares a JSON Schema for its input (served by ``tools/list``).
- Every registered tool is wrapped so latency and status land in
  :mod:`services.metrics`.
- :func:`invoke_tool` is the only way the producer and the MCP endpoint run
  a tool.
"""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable

from errors.exceptions import ToolError, ToolNotFoundError
from services.metrics import get_metrics_collector

logger = logging.getLogger(__name__)


@dataclass
class RegisteredTool:
    """Metadata for a registered tool."""

    name: str
    func: Callable[..., Any]
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object"})

    def to_mcp(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


# Module-level registry
_registry: dict[str, RegisteredTool] = {}


def register_tool(
    *,
    name: str | None = None,
    description: str | None = None,
    input_schema: dict[str, Any] | None = None,
):
    """Decorator to register an async tool function.

    Usage::

        @register_tool(name="get-data", input_schema={"type": "object"})
        async def get_data(size: int = 1000) -> list[dict]:
            ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"tool {func.__name__!r} must be an async function")
        tool_name = name or func.__name__
        doc = description or (func.__doc__ or "").strip().split("\n")[0]
        wrapped = _wrap_with_metrics(func, tool_name)
        _registry[tool_name] = RegisteredTool(
            name=tool_name,
            func=wrapped,
            description=doc,
            input_schema=input_schema or {"type": "object"},
        )
        return wrapped

    return decorator


# ── Public API ──────────────────────────────────────────────


def get_tool(name: str) -> RegisteredTool:
    """Look up a tool by name.

    Raises:
        ToolNotFoundError: no tool is registered under ``name``.
    """
    try:
        return _registry[name]
    except KeyError:
        raise ToolNotFoundError(name) from None


def list_tools() -> list[RegisteredTool]:
    return list(_registry.values())


def get_tool_names() -> list[str]:
    return list(_registry.keys())


async def invoke_tool(name: str, arguments: dict[str, Any] | None = None) -> Any:
    """Run a registered tool with keyword ``arguments``.

    Raises:
        ToolNotFoundError: unknown tool.
        ToolError: the tool failed or rejected its arguments.
    """
    tool = get_tool(name)
    try:
        return await tool.func(**(arguments or {}))
    except TypeError as exc:
        raise ToolError(name, f"invalid arguments: {exc}") from exc


def _wrap_with_metrics(func: Callable[..., Any], tool_name: str) -> Callable[..., Any]:
    @wraps(func)
    async def wrapped(*args: Any, **kwargs: Any) -> Any:
        start = time.monotonic()
        status = "ok"
        try:
            return await func(*args, **kwargs)
        except BaseException as exc:
            status = "cancelled" if not isinstance(exc, Exception) else "error"
            if isinstance(exc, Exception) and not isinstance(exc, ToolError):
                logger.exception("tool %s raised an unhandled exception", tool_name)
            raise
        finally:
            latency_ms = (time.monotonic() - start) * 1000
            get_metrics_collector().record_tool_call(
                tool_name=tool_name,
                status=status,
                latency_ms=latency_ms,
            )

    return wrapped
