"""Inbound request models for the streaming endpoint."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class FaultPlan(BaseModel):
    """Server-side fault injection for one request.

    Each fault reproduces one hypothesis for streams that end without a
    terminal event.
    """

    truncate_after_events: int | None = Field(
        default=None,
        ge=0,
        description="Close the transport silently after this many events.",
    )
    silent_timeout: bool = Field(
        default=False,
        description="On tool timeout, close without emitting an error event.",
    )
    fail_tool: bool = Field(default=False, description="Make every tool call raise.")
    tool_timeout_s: float | None = Field(default=None, gt=0)


class InvocationRequest(BaseModel):
    """A messages-style invocation.

    ``model`` through ``mcp_servers`` mirror a real Messages API request and
    are opaque to the harness; the remaining fields steer the mock producer.
    """

    model: str = "mock-model"
    max_tokens: int = 2048
    stream: bool = True
    system: Any = None
    messages: list[dict[str, Any]] = Field(default_factory=list)
    thinking: dict[str, Any] | None = None
    mcp_servers: list[dict[str, Any]] = Field(default_factory=list)

    # ── Harness knobs ────────────────────────────────────────
    probe_id: str | None = Field(default=None, max_length=128)
    tool_name: str = "get-data"
    tool_calls: int | None = Field(default=None, ge=0, le=1000)
    delay_ms: int | None = Field(default=None, ge=0)
    size_bytes: int | None = Field(default=None, ge=0)
    faults: FaultPlan = Field(default_factory=FaultPlan)

    @property
    def thinking_enabled(self) -> bool:
        return bool(self.thinking) and self.thinking.get("type") == "enabled"

    @property
    def server_name(self) -> str:
        if self.mcp_servers:
            return str(self.mcp_servers[0].get("name", "mock"))
        return "mock"
