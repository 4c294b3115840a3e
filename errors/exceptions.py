"""Domain-specific exceptions for the stream completion probe.

These exceptions let the assembler, the router and the HTTP layer tell apart
the failure modes a stream can end in: a malformed event sequence, a stream
that was silently cut short, an explicit ``error`` event, and a producer that
tried to write to a connection that is already gone.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from models.errors import FailureReason

if TYPE_CHECKING:
    from models.message import Message


# ── Assembly failures ───────────────────────────────────────────


class StreamAssemblyError(Exception):
    """Base class for every way a stream can fail to yield a final message.

    Carries the reason code and the partial message known at failure time
    (``None`` when ``message_start`` was never observed).
    """

    reason: FailureReason

    def __init__(self, message: str, partial: Message | None = None) -> None:
        self.partial = partial
        super().__init__(message)


class ProtocolViolation(StreamAssemblyError):
    """An event arrived that the state machine does not allow."""

    reason = FailureReason.PROTOCOL_VIOLATION

    def __init__(
        self,
        message: str,
        partial: Message | None = None,
        event_kind: str | None = None,
    ) -> None:
        self.event_kind = event_kind
        super().__init__(message, partial)


class IncompleteStream(StreamAssemblyError):
    """The transport closed before ``message_stop`` or ``error`` arrived.

    This is the defect signature the harness exists to catch.
    """

    reason = FailureReason.INCOMPLETE_STREAM

    def __init__(
        self,
        partial: Message | None,
        unsealed_blocks: int,
        last_event: str | None = None,
    ) -> None:
        self.unsealed_blocks = unsealed_blocks
        self.last_event = last_event
        super().__init__(
            f"stream ended without message_stop "
            f"(last event: {last_event or 'none'}, unsealed blocks: {unsealed_blocks})",
            partial,
        )


class RemoteStreamError(StreamAssemblyError):
    """The producer reported a failure through an ``error`` event."""

    reason = FailureReason.REMOTE_ERROR

    def __init__(
        self,
        error_type: str,
        error_message: str,
        partial: Message | None = None,
    ) -> None:
        self.error_type = error_type
        self.error_message = error_message
        super().__init__(f"{error_type}: {error_message}", partial)


# ── Routing failures ────────────────────────────────────────────


class ChannelClosed(Exception):
    """A dispatch targeted a connection that has already terminated."""

    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        super().__init__(f"connection {connection_id} is closed")


class RouterAtCapacity(Exception):
    """The router refused a connection because the live limit is reached."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"too many concurrent connections (limit={limit})")


# ── Tool failures ───────────────────────────────────────────────


class ToolError(Exception):
    """Base class for tool execution errors."""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' failed: {message}")


class ToolNotFoundError(ToolError):
    """A tool name that is not in the registry was requested."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(tool_name, "unknown tool")
