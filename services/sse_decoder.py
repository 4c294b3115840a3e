"""Server-sent event framing — decode and encode ``event:`` / ``data:`` records.

Decoding is incremental and tolerant of fragmentation: chunks may split a
record (or a line) anywhere, and the decoder only dispatches a record at the
blank line that terminates it.  Comment lines (``: ...``) are dropped.

A record still being accumulated when the transport closes is *not*
dispatched; :meth:`SSEDecoder.close` reports whether one was discarded, which
is how a stream truncated mid-record shows up.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator

from sse_starlette.sse import ServerSentEvent

from errors.exceptions import ProtocolViolation
from models.wire_events import PING, WireEvent, event_to_dict, parse_wire_event

_LINE_END = re.compile(r"\r\n|\r|\n")


@dataclass
class SSERecord:
    """One dispatched SSE record."""

    event: str | None
    data: str
    id: str | None = None

    def json(self) -> Any:
        return json.loads(self.data)


class SSEDecoder:
    """Incremental SSE record decoder."""

    def __init__(self) -> None:
        # Chunks received since the last line terminator.
        self._tail: list[str] = []
        self._event: str | None = None
        self._data: list[str] = []
        self._id: str | None = None
        self._pending = False

    def feed(self, chunk: str) -> list[SSERecord]:
        """Feed raw text (any split) and return the records it completed."""
        if not chunk:
            return []
        held_cr = bool(self._tail) and self._tail[-1].endswith("\r")
        self._tail.append(chunk)
        if not held_cr and "\n" not in chunk and "\r" not in chunk:
            return []

        buffer = "".join(self._tail)
        records: list[SSERecord] = []
        start = 0
        for match in _LINE_END.finditer(buffer):
            if match.group() == "\r" and match.end() == len(buffer):
                # A lone trailing CR may be the first half of CRLF.
                break
            record = self.feed_line(buffer[start:match.start()])
            start = match.end()
            if record is not None:
                records.append(record)
        rest = buffer[start:]
        self._tail = [rest] if rest else []
        return records

    def feed_line(self, line: str) -> SSERecord | None:
        """Feed one line without its terminator; returns a record on blank lines."""
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        self._pending = True
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            self._id = value
        # "retry" and unknown fields are ignored
        return None

    def close(self) -> bool:
        """Signal end of input.  Returns ``True`` if a partial record was dropped."""
        dropped = self._pending or any(self._tail)
        self._tail = []
        self._reset()
        return dropped

    def _dispatch(self) -> SSERecord | None:
        if not self._pending:
            return None
        record = None
        if self._data:
            record = SSERecord(event=self._event, data="\n".join(self._data), id=self._id)
        self._reset()
        return record

    def _reset(self) -> None:
        self._event = None
        self._data = []
        self._id = None
        self._pending = False


def decode_record(record: SSERecord) -> WireEvent | None:
    """Turn a record into a wire event, or ``None`` for keep-alives.

    Raises:
        ProtocolViolation: the data is not JSON or not a valid event.
    """
    if record.event == PING:
        return None
    try:
        data = record.json()
    except json.JSONDecodeError as exc:
        raise ProtocolViolation(f"record data is not JSON: {exc.msg}", event_kind=record.event) from exc
    if isinstance(data, dict) and data.get("type") == PING:
        return None
    return parse_wire_event(record.event, data)


async def iter_wire_events(lines: AsyncIterable[str]) -> AsyncIterator[WireEvent]:
    """Decode an async stream of text lines into wire events."""
    decoder = SSEDecoder()
    async for line in lines:
        record = decoder.feed_line(line.rstrip("\r\n"))
        if record is None:
            continue
        event = decode_record(record)
        if event is not None:
            yield event
    decoder.close()


# ── Encoding ─────────────────────────────────────────────────


def encode_event(event: WireEvent) -> str:
    """Encode a wire event as one ``event:`` / ``data:`` record."""
    payload = json.dumps(event_to_dict(event), ensure_ascii=False, separators=(",", ":"))
    return _encode(ServerSentEvent(data=payload, event=event.type))


def encode_ping() -> str:
    """Heartbeat record sent while a connection is idle."""
    return _encode(ServerSentEvent(data='{"type":"ping"}', event=PING))


def _encode(sse: ServerSentEvent) -> str:
    return sse.encode().decode("utf-8")
