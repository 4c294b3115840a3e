"""Custom exception hierarchy for the stream completion probe."""

from errors.exceptions import (
    ChannelClosed,
    IncompleteStream,
    ProtocolViolation,
    RemoteStreamError,
    RouterAtCapacity,
    StreamAssemblyError,
    ToolError,
    ToolNotFoundError,
)

__all__ = [
    "ChannelClosed",
    "IncompleteStream",
    "ProtocolViolation",
    "RemoteStreamError",
    "RouterAtCapacity",
    "StreamAssemblyError",
    "ToolError",
    "ToolNotFoundError",
]
