"""Stream assembler — folds typed wire events into one message.

The assembler is a synchronous state machine.  It never reads from a socket
and never times out: the transport feeds it events with :meth:`consume` and
reports closure with :meth:`end_of_stream`.  :meth:`finalize` then either
returns the complete message or raises the classified failure.

States::

    idle --message_start--> started <--> in_block
    started / in_block --message_stop--> complete
    any --error / violation--> failed

Every transition the state machine does not allow raises
:class:`~errors.exceptions.ProtocolViolation`; nothing is ignored silently.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from enum import Enum
from typing import AsyncIterable, cast

from errors.exceptions import (
    IncompleteStream,
    ProtocolViolation,
    RemoteStreamError,
    StreamAssemblyError,
)
from models.message import (
    TOOL_RESULT_BLOCK_TYPES,
    TOOL_USE_BLOCK_TYPES,
    ContentBlock,
    Message,
    accepts_delta,
)
from models.wire_events import (
    BlockDeltaEvent,
    BlockStartEvent,
    BlockStopEvent,
    ErrorEvent,
    MessageDeltaEvent,
    MessageStartEvent,
    MessageStopEvent,
    WireEvent,
)

logger = logging.getLogger(__name__)


class AssemblerState(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    IN_BLOCK = "in_block"
    COMPLETE = "complete"
    FAILED = "failed"


_TERMINAL = frozenset({AssemblerState.COMPLETE, AssemblerState.FAILED})


class StreamAssembler:
    """Assemble one logical stream into a :class:`~models.message.Message`.

    Usage::

        assembler = StreamAssembler()
        for event in events:
            assembler.consume(event)
        assembler.end_of_stream()
        message = assembler.finalize()
    """

    def __init__(self) -> None:
        self._state = AssemblerState.IDLE
        self._message: Message | None = None
        self._blocks: dict[int, ContentBlock] = {}
        self._failure: StreamAssemblyError | None = None
        self._ended = False
        self._last_event: str | None = None
        self.event_counts: Counter[str] = Counter()
        self.block_counts: Counter[str] = Counter()

    # ── Introspection ───────────────────────────────────────

    @property
    def state(self) -> AssemblerState:
        return self._state

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def last_event(self) -> str | None:
        return self._last_event

    @property
    def unsealed_count(self) -> int:
        return sum(1 for b in self._blocks.values() if not b.sealed)

    def snapshot(self) -> Message | None:
        """Return a copy of the message as currently known, or ``None``."""
        if self._message is None:
            return None
        message = self._message.model_copy(deep=True)
        message.content = [
            self._blocks[i].model_copy(deep=True) for i in sorted(self._blocks)
        ]
        return message

    # ── Folding ─────────────────────────────────────────────

    def consume(self, event: WireEvent) -> None:
        """Apply one event to the in-progress message.

        Raises:
            ProtocolViolation: the event is not allowed in the current state.
                The assembler moves to ``failed`` before raising.
        """
        kind = event.type
        if self._ended:
            raise self._violation(f"{kind} received after end of stream", kind)
        if self._state in _TERMINAL:
            raise self._violation(f"{kind} received in terminal state {self._state.value}", kind)

        self.event_counts[kind] += 1
        self._last_event = kind

        if isinstance(event, ErrorEvent):
            self._on_error(event)
        elif isinstance(event, MessageStartEvent):
            self._on_message_start(event)
        elif isinstance(event, BlockStartEvent):
            self._on_block_start(event)
        elif isinstance(event, BlockDeltaEvent):
            self._on_block_delta(event)
        elif isinstance(event, BlockStopEvent):
            self._on_block_stop(event)
        elif isinstance(event, MessageDeltaEvent):
            self._on_message_delta(event)
        elif isinstance(event, MessageStopEvent):
            self._on_message_stop()
        else:
            raise self._violation(f"unsupported event kind {kind!r}", kind)

    def end_of_stream(self) -> None:
        """Record that the transport closed; no more events will arrive."""
        if not self._ended:
            self._ended = True
            logger.debug("end of stream in state %s", self._state.value)

    def finalize(self) -> Message:
        """Return the complete message or raise the classified failure.

        Raises:
            ProtocolViolation: called before :meth:`end_of_stream`, or the
                stream was malformed.
            RemoteStreamError: the stream carried an ``error`` event.
            IncompleteStream: the stream ended before ``message_stop``.
        """
        if not self._ended:
            raise ProtocolViolation(
                "finalize() called before end of stream", partial=self.snapshot()
            )
        if self._state is AssemblerState.COMPLETE:
            return cast(Message, self.snapshot())
        if self._state is AssemblerState.FAILED and self._failure is not None:
            raise self._failure
        raise IncompleteStream(
            partial=self.snapshot(),
            unsealed_blocks=self.unsealed_count,
            last_event=self._last_event,
        )

    # ── Handlers ────────────────────────────────────────────

    def _on_error(self, event: ErrorEvent) -> None:
        self._state = AssemblerState.FAILED
        self._failure = RemoteStreamError(
            event.error.type, event.error.message, partial=self.snapshot()
        )
        logger.info("stream reported error: %s", self._failure)

    def _on_message_start(self, event: MessageStartEvent) -> None:
        if self._state is not AssemblerState.IDLE:
            raise self._violation("message_start received twice", event.type)
        header = event.message
        self._message = Message(
            id=header.id,
            role=header.role,
            model=header.model,
            usage={k: v for k, v in header.usage.items() if v is not None},
        )
        self._state = AssemblerState.STARTED

    def _on_block_start(self, event: BlockStartEvent) -> None:
        self._require_started(event.type)
        if event.index in self._blocks:
            raise self._violation(f"block {event.index} started twice", event.type)
        header = event.content_block
        data = header.model_dump(exclude={"type"})
        if header.type in TOOL_USE_BLOCK_TYPES:
            data.setdefault("input", {})
        self._blocks[event.index] = ContentBlock(index=event.index, type=header.type, data=data)
        self.block_counts[header.type] += 1
        self._state = AssemblerState.IN_BLOCK

    def _on_block_delta(self, event: BlockDeltaEvent) -> None:
        self._require_started(event.type)
        block = self._open_block(event.index, event.type)
        delta = event.delta
        if not accepts_delta(block.type, delta.type):
            raise self._violation(
                f"{delta.type} is not valid for {block.type} block {event.index}", event.type
            )

        if delta.type == "text_delta":
            if block.type in TOOL_RESULT_BLOCK_TYPES:
                _append_result_text(block, delta.text)
            else:
                block.data["text"] = block.data.get("text", "") + delta.text
            block.raw += delta.text
        elif delta.type == "thinking_delta":
            block.data["thinking"] = block.data.get("thinking", "") + delta.thinking
            block.raw += delta.thinking
        elif delta.type == "signature_delta":
            block.data["signature"] = delta.signature
        elif delta.type == "input_json_delta":
            block.raw += delta.partial_json
        elif delta.type == "citations_delta":
            block.data.setdefault("citations", []).append(delta.citation)

    def _on_block_stop(self, event: BlockStopEvent) -> None:
        self._require_started(event.type)
        block = self._open_block(event.index, event.type)
        if block.type in TOOL_USE_BLOCK_TYPES and block.raw:
            try:
                block.data["input"] = json.loads(block.raw)
            except json.JSONDecodeError as exc:
                raise self._violation(
                    f"tool input for block {event.index} is not valid JSON: {exc.msg}",
                    event.type,
                ) from exc
        block.sealed = True
        if self.unsealed_count == 0:
            self._state = AssemblerState.STARTED

    def _on_message_delta(self, event: MessageDeltaEvent) -> None:
        message = self._require_started(event.type)
        if event.delta.stop_reason is not None:
            message.stop_reason = event.delta.stop_reason
        if event.delta.stop_sequence is not None:
            message.stop_sequence = event.delta.stop_sequence
        for name, value in event.usage.items():
            if value is not None:
                message.usage[name] = value

    def _on_message_stop(self) -> None:
        message = self._require_started("message_stop")
        unsealed = self.unsealed_count
        if unsealed:
            raise self._violation(
                f"message_stop with {unsealed} unsealed block(s)", "message_stop"
            )
        message.complete = True
        self._state = AssemblerState.COMPLETE

    # ── Helpers ─────────────────────────────────────────────

    def _require_started(self, kind: str) -> Message:
        if self._state is AssemblerState.IDLE or self._message is None:
            raise self._violation(f"{kind} received before message_start", kind)
        return self._message

    def _open_block(self, index: int, kind: str) -> ContentBlock:
        block = self._blocks.get(index)
        if block is None:
            raise self._violation(f"{kind} addresses unknown block {index}", kind)
        if block.sealed:
            raise self._violation(f"{kind} addresses sealed block {index}", kind)
        return block

    def _violation(self, message: str, kind: str | None) -> ProtocolViolation:
        exc = ProtocolViolation(message, partial=self.snapshot(), event_kind=kind)
        if self._state not in _TERMINAL:
            self._state = AssemblerState.FAILED
            self._failure = exc
        logger.warning("protocol violation: %s", message)
        return exc


def _append_result_text(block: ContentBlock, text: str) -> None:
    content = block.data.get("content")
    if isinstance(content, str):
        block.data["content"] = content + text
        return
    if not isinstance(content, list):
        content = []
        block.data["content"] = content
    if content and isinstance(content[-1], dict) and content[-1].get("type") == "text":
        content[-1]["text"] = content[-1].get("text", "") + text
    else:
        content.append({"type": "text", "text": text})


async def assemble(
    events: AsyncIterable[WireEvent],
    assembler: StreamAssembler | None = None,
) -> Message:
    """Fold an async event source to completion and finalize it.

    The source being exhausted counts as transport closure.  Exceptions from
    the source itself propagate unchanged.
    """
    assembler = assembler or StreamAssembler()
    async for event in events:
        assembler.consume(event)
    assembler.end_of_stream()
    return assembler.finalize()


__all__ = ["AssemblerState", "StreamAssembler", "assemble"]
