"""Typed wire events for the incremental message protocol.

A stream is an ordered sequence of these records.  Each record is tagged by
its ``type`` field; :data:`WireEvent` is the discriminated union over all
kinds and :func:`parse_wire_event` turns a decoded SSE record into one.

Event sequence for a well-formed stream::

    message_start -> (block_start -> block_delta* -> block_stop)* ->
    message_delta -> message_stop

``error`` may appear anywhere and ends the stream.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from errors.exceptions import ProtocolViolation

# ── Kinds ────────────────────────────────────────────────────

MESSAGE_START = "message_start"
BLOCK_START = "block_start"
BLOCK_DELTA = "block_delta"
BLOCK_STOP = "block_stop"
MESSAGE_DELTA = "message_delta"
MESSAGE_STOP = "message_stop"
ERROR = "error"

WIRE_KINDS = frozenset({
    MESSAGE_START,
    BLOCK_START,
    BLOCK_DELTA,
    BLOCK_STOP,
    MESSAGE_DELTA,
    MESSAGE_STOP,
    ERROR,
})

# Keep-alive records; dropped by the decoder, never folded.
PING = "ping"

# Names used by the Anthropic Messages API for the block events.
_KIND_ALIASES = {
    "content_block_start": BLOCK_START,
    "content_block_delta": BLOCK_DELTA,
    "content_block_stop": BLOCK_STOP,
}


def normalize_kind(kind: str) -> str:
    """Map Anthropic block-event names onto the canonical kinds."""
    return _KIND_ALIASES.get(kind, kind)


# ── Deltas ───────────────────────────────────────────────────


class TextDelta(BaseModel):
    type: Literal["text_delta"] = "text_delta"
    text: str


class ThinkingDelta(BaseModel):
    type: Literal["thinking_delta"] = "thinking_delta"
    thinking: str


class SignatureDelta(BaseModel):
    type: Literal["signature_delta"] = "signature_delta"
    signature: str


class InputJsonDelta(BaseModel):
    type: Literal["input_json_delta"] = "input_json_delta"
    partial_json: str


class CitationsDelta(BaseModel):
    type: Literal["citations_delta"] = "citations_delta"
    citation: dict[str, Any]


Delta = Annotated[
    Union[TextDelta, ThinkingDelta, SignatureDelta, InputJsonDelta, CitationsDelta],
    Field(discriminator="type"),
]


# ── Payload parts ────────────────────────────────────────────


class MessageHeader(BaseModel):
    """The ``message`` object carried by ``message_start``."""

    id: str
    type: str = "message"
    role: str = "assistant"
    model: str = ""
    usage: dict[str, int | None] = Field(default_factory=dict)


class BlockHeader(BaseModel):
    """The ``content_block`` object carried by ``block_start``.

    Only ``type`` is required; any other fields (``id``, ``name``, ``text``,
    ``content`` ...) are kept as they arrive.
    """

    model_config = ConfigDict(extra="allow")

    type: str


class StopInfo(BaseModel):
    stop_reason: str | None = None
    stop_sequence: str | None = None


class ErrorInfo(BaseModel):
    type: str = "api_error"
    message: str = ""


# ── Events ───────────────────────────────────────────────────


class _Event(BaseModel):
    @property
    def kind(self) -> str:
        return self.type  # type: ignore[attr-defined]


class MessageStartEvent(_Event):
    type: Literal["message_start"] = "message_start"
    message: MessageHeader


class BlockStartEvent(_Event):
    type: Literal["block_start"] = "block_start"
    index: int = Field(ge=0)
    content_block: BlockHeader


class BlockDeltaEvent(_Event):
    type: Literal["block_delta"] = "block_delta"
    index: int = Field(ge=0)
    delta: Delta


class BlockStopEvent(_Event):
    type: Literal["block_stop"] = "block_stop"
    index: int = Field(ge=0)


class MessageDeltaEvent(_Event):
    type: Literal["message_delta"] = "message_delta"
    delta: StopInfo = Field(default_factory=StopInfo)
    usage: dict[str, int | None] = Field(default_factory=dict)


class MessageStopEvent(_Event):
    type: Literal["message_stop"] = "message_stop"


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    error: ErrorInfo = Field(default_factory=ErrorInfo)


WireEvent = Annotated[
    Union[
        MessageStartEvent,
        BlockStartEvent,
        BlockDeltaEvent,
        BlockStopEvent,
        MessageDeltaEvent,
        MessageStopEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

_wire_adapter: TypeAdapter[WireEvent] = TypeAdapter(WireEvent)


def parse_wire_event(kind: str | None, data: dict[str, Any]) -> WireEvent:
    """Validate one decoded record into a typed event.

    Args:
        kind: The SSE ``event:`` name, if any.  When present it wins over the
            ``type`` field in ``data``; Anthropic aliases are normalized.
        data: The decoded JSON payload.

    Raises:
        ProtocolViolation: unknown kind, kind/type disagreement, or a payload
            that does not match the kind's schema.
    """
    if not isinstance(data, dict):
        raise ProtocolViolation(f"event payload must be an object, got {type(data).__name__}")

    body_kind = data.get("type")
    if body_kind is not None and not isinstance(body_kind, str):
        raise ProtocolViolation(
            f"payload type must be a string, got {type(body_kind).__name__}",
            event_kind=kind,
        )
    resolved = normalize_kind(kind or body_kind or "")
    if body_kind is not None and normalize_kind(body_kind) != resolved:
        raise ProtocolViolation(
            f"event name {kind!r} disagrees with payload type {body_kind!r}",
            event_kind=resolved,
        )
    if resolved not in WIRE_KINDS:
        raise ProtocolViolation(f"unknown event kind {resolved!r}", event_kind=resolved)

    try:
        return _wire_adapter.validate_python({**data, "type": resolved})
    except ValidationError as exc:
        raise ProtocolViolation(
            f"malformed {resolved} payload: {exc.errors()[0]['msg']}",
            event_kind=resolved,
        ) from exc


def event_to_dict(event: WireEvent) -> dict[str, Any]:
    """Serialize an event to its JSON-ready wire form."""
    return event.model_dump(mode="json", exclude_none=True)
