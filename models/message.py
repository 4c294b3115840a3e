"""Message and content block models built up by the stream assembler."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# Block types grouped by the delta kinds they accept.
TEXT_BLOCK_TYPES = frozenset({"text"})
THINKING_BLOCK_TYPES = frozenset({"thinking", "redacted_thinking"})
TOOL_USE_BLOCK_TYPES = frozenset({"tool_use", "server_tool_use", "mcp_tool_use"})
TOOL_RESULT_BLOCK_TYPES = frozenset({"tool_result", "mcp_tool_result"})

DELTA_COMPATIBILITY: dict[str, frozenset[str]] = {
    **{t: frozenset({"text_delta", "citations_delta"}) for t in TEXT_BLOCK_TYPES},
    **{t: frozenset({"thinking_delta", "signature_delta"}) for t in THINKING_BLOCK_TYPES},
    **{t: frozenset({"input_json_delta"}) for t in TOOL_USE_BLOCK_TYPES},
    **{t: frozenset({"text_delta"}) for t in TOOL_RESULT_BLOCK_TYPES},
}


def accepts_delta(block_type: str, delta_type: str) -> bool:
    """Whether a block of ``block_type`` may receive a ``delta_type`` delta."""
    return delta_type in DELTA_COMPATIBILITY.get(block_type, frozenset())


class ContentBlock(BaseModel):
    """One addressable unit of message content.

    ``data`` holds the fields announced by ``block_start`` as mutated by
    deltas; ``raw`` is every delta fragment concatenated in arrival order.
    """

    index: int
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    raw: str = ""
    sealed: bool = False

    @property
    def text(self) -> str:
        """Readable text of the block, whatever its type."""
        if self.type in TEXT_BLOCK_TYPES:
            return str(self.data.get("text", ""))
        if self.type in THINKING_BLOCK_TYPES:
            return str(self.data.get("thinking", ""))
        if self.type in TOOL_RESULT_BLOCK_TYPES:
            content = self.data.get("content")
            if isinstance(content, str):
                return content
            if isinstance(content, list):
                return "".join(
                    str(item.get("text", ""))
                    for item in content
                    if isinstance(item, dict) and item.get("type") == "text"
                )
            return ""
        return self.raw

    def to_wire(self) -> dict[str, Any]:
        """Render the block the way a non-streaming response would."""
        return {**self.data, "type": self.type}


class Message(BaseModel):
    """A message in progress, or final once ``message_stop`` was seen."""

    id: str
    role: str = "assistant"
    model: str = ""
    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: dict[str, int] = Field(default_factory=dict)
    complete: bool = False

    def blocks_of_type(self, block_type: str) -> list[ContentBlock]:
        return [b for b in self.content if b.type == block_type]

    @property
    def unsealed_blocks(self) -> list[ContentBlock]:
        return [b for b in self.content if not b.sealed]

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "message",
            "role": self.role,
            "model": self.model,
            "content": [b.to_wire() for b in self.content],
            "stop_reason": self.stop_reason,
            "stop_sequence": self.stop_sequence,
            "usage": dict(self.usage),
        }
