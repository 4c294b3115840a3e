"""Probe client — drive one streamed invocation and classify how it ended.

A probe posts an :class:`~models.request.InvocationRequest` to
``/v1/messages``, decodes the SSE body line by line, folds every event into a
:class:`~services.assembler.StreamAssembler` and reports a
:class:`ProbeResult`.  The idle deadline lives here, not in the assembler:
when no line arrives within ``idle_timeout`` seconds the probe stops reading
and finalizes whatever it has.

Tool results carry a ``[<probe_id>:<call>]`` marker; a result with another
probe's marker (or a missing result) means content crossed connections.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from typing import Any, AsyncIterable, AsyncIterator

import httpx
from pydantic import BaseModel, Field

from errors.exceptions import (
    IncompleteStream,
    ProtocolViolation,
    RemoteStreamError,
    StreamAssemblyError,
)
from models.errors import ProbeVerdict
from models.message import Message
from models.request import InvocationRequest
from models.wire_events import BlockStartEvent, ErrorEvent, MessageStopEvent, WireEvent
from services.assembler import StreamAssembler
from services.sse_decoder import SSEDecoder, decode_record

logger = logging.getLogger(__name__)

TOOL_RESULT = "mcp_tool_result"

OBSERVATION_RESULT_NEVER_ARRIVED = (
    "Tool was called but its result never arrived, with no error event"
)
OBSERVATION_SILENT_TRUNCATION = (
    "Stream ended without message_stop and without an error event"
)


class ProbeResult(BaseModel):
    """Outcome of one probe."""

    probe_id: str
    verdict: ProbeVerdict
    duration_ms: float
    events: dict[str, int] = Field(default_factory=dict)
    message: Message | None = None
    partial: Message | None = None
    error: str | None = None
    observation: str | None = None
    connection_id: str | None = None
    dropped_partial_record: bool = False

    @property
    def success(self) -> bool:
        return self.verdict is ProbeVerdict.COMPLETE

    @property
    def tool_results(self) -> list[str]:
        source = self.message or self.partial
        if source is None:
            return []
        return [block.text for block in source.blocks_of_type(TOOL_RESULT)]


class _Run:
    """Mutable bookkeeping for a single probe."""

    def __init__(self, probe_id: str) -> None:
        self.probe_id = probe_id
        self.started = time.monotonic()
        self.assembler = StreamAssembler()
        self.counts: Counter[str] = Counter()
        self.failure: StreamAssemblyError | None = None
        self.transport_error: str | None = None
        self.connection_id: str | None = None
        self.dropped_partial_record = False

    def fold(self, event: WireEvent) -> None:
        if isinstance(event, BlockStartEvent):
            self.counts[event.content_block.type] += 1
        elif isinstance(event, MessageStopEvent):
            self.counts["message_stop"] += 1
        elif isinstance(event, ErrorEvent):
            self.counts["stream_error"] += 1
        self.assembler.consume(event)


class StreamProbe:
    """Run probes against a server reachable through ``client``.

    Args:
        client: An ``httpx.AsyncClient`` whose ``base_url`` points at the
            server (or wraps an ASGI app in tests).  Only
            :meth:`run` needs it.
        idle_timeout: Seconds without a line before the probe gives up.
    """

    def __init__(self, client: httpx.AsyncClient | None, idle_timeout: float = 120.0) -> None:
        self._client = client
        self._idle_timeout = idle_timeout

    async def run(
        self,
        request: InvocationRequest,
        probe_id: str,
        expected_results: int | None = None,
    ) -> ProbeResult:
        """POST ``request`` with ``stream: true`` and classify the outcome."""
        if self._client is None:
            raise RuntimeError("StreamProbe.run needs an HTTP client")
        run = _Run(probe_id)
        payload = request.model_copy(update={"probe_id": probe_id, "stream": True})
        decoder = SSEDecoder()

        try:
            async with self._client.stream(
                "POST",
                "/v1/messages",
                json=payload.model_dump(exclude_none=True),
            ) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", "replace")
                    run.transport_error = f"HTTP {response.status_code}: {body[:200]}"
                    run.counts["transport_error"] += 1
                else:
                    run.counts["connect"] += 1
                    run.connection_id = response.headers.get("x-connection-id")
                    async for line in _with_idle_deadline(response.aiter_lines(), self._idle_timeout):
                        record = decoder.feed_line(line.rstrip("\r\n"))
                        if record is None:
                            continue
                        event = decode_record(record)
                        if event is not None:
                            run.fold(event)
        except asyncio.TimeoutError:
            run.counts["idle_timeout"] += 1
            logger.warning("Probe %s: no data for %.1fs, giving up", probe_id, self._idle_timeout)
        except httpx.TransportError as exc:
            run.counts["transport_error"] += 1
            run.transport_error = f"{type(exc).__name__}: {exc}"
        except ProtocolViolation as exc:
            run.failure = exc

        run.dropped_partial_record = decoder.close()
        return _finish(run, expected_results, check_markers=True)

    async def run_events(
        self,
        source: AsyncIterable[WireEvent],
        probe_id: str,
        expected_results: int | None = None,
        transport_errors: tuple[type[BaseException], ...] = (httpx.TransportError,),
        check_markers: bool = False,
    ) -> ProbeResult:
        """Fold an arbitrary async event source (e.g. a live API stream).

        Live tool results carry no ``[probe_id:n]`` marker, so the marker
        check only runs when ``check_markers`` is set.  ``expected_results``
        is always checked.
        """
        run = _Run(probe_id)
        try:
            async for event in _with_idle_deadline(source, self._idle_timeout):
                if not run.counts["connect"]:
                    run.counts["connect"] += 1
                run.fold(event)
        except asyncio.TimeoutError:
            run.counts["idle_timeout"] += 1
        except ProtocolViolation as exc:
            run.failure = exc
        except transport_errors as exc:
            run.counts["transport_error"] += 1
            run.transport_error = f"{type(exc).__name__}: {exc}"
        return _finish(run, expected_results, check_markers)


async def _with_idle_deadline(source: AsyncIterable[Any], timeout: float) -> AsyncIterator[Any]:
    """Re-yield ``source``, raising ``asyncio.TimeoutError`` after ``timeout`` idle seconds."""
    iterator = source.__aiter__()
    while True:
        try:
            item = await asyncio.wait_for(iterator.__anext__(), timeout=timeout)
        except StopAsyncIteration:
            return
        yield item


def _finish(run: _Run, expected_results: int | None, check_markers: bool) -> ProbeResult:
    assembler = run.assembler
    assembler.end_of_stream()
    message: Message | None = None
    failure = run.failure
    if failure is None:
        try:
            message = assembler.finalize()
        except StreamAssemblyError as exc:
            failure = exc

    if message is not None:
        verdict, error = _check_results(message, run.probe_id, expected_results, check_markers)
    elif isinstance(failure, RemoteStreamError):
        verdict, error = ProbeVerdict.REMOTE_ERROR, str(failure)
    elif isinstance(failure, ProtocolViolation):
        verdict, error = ProbeVerdict.PROTOCOL_VIOLATION, str(failure)
    elif run.transport_error is not None:
        verdict, error = ProbeVerdict.TRANSPORT_ERROR, run.transport_error
    else:
        verdict, error = ProbeVerdict.INCOMPLETE_STREAM, str(failure)

    result = ProbeResult(
        probe_id=run.probe_id,
        verdict=verdict,
        duration_ms=round((time.monotonic() - run.started) * 1000, 1),
        events=dict(run.counts),
        message=message,
        partial=failure.partial if failure is not None else None,
        error=error,
        observation=_observe(run.counts, failure) if verdict is not ProbeVerdict.COMPLETE else None,
        connection_id=run.connection_id,
        dropped_partial_record=run.dropped_partial_record,
    )
    if result.success:
        logger.info("Probe %s complete in %.0fms", run.probe_id, result.duration_ms)
    else:
        logger.warning("Probe %s failed (%s): %s", run.probe_id, verdict.value, error)
    return result


def _check_results(
    message: Message, probe_id: str, expected_results: int | None, check_markers: bool
) -> tuple[ProbeVerdict, str | None]:
    results = [block.text for block in message.blocks_of_type(TOOL_RESULT)]
    foreign: list[str] = []
    if check_markers:
        foreign = [text[:64] for text in results if not text.startswith(f"[{probe_id}:")]
    if foreign:
        return ProbeVerdict.CROSS_TALK, f"{len(foreign)} tool result(s) belong to another probe: {foreign[0]!r}"
    if expected_results is not None and len(results) != expected_results:
        return ProbeVerdict.CROSS_TALK, f"expected {expected_results} tool result(s), got {len(results)}"
    return ProbeVerdict.COMPLETE, None


def _observe(counts: Counter[str], failure: StreamAssemblyError | None) -> str | None:
    errored = counts["stream_error"] or counts["transport_error"]
    if counts["mcp_tool_use"] and not counts[TOOL_RESULT] and not errored:
        return OBSERVATION_RESULT_NEVER_ARRIVED
    if isinstance(failure, IncompleteStream) and not counts["message_stop"] and not errored:
        return OBSERVATION_SILENT_TRUNCATION
    return None


def summarize(results: list[ProbeResult]) -> dict[str, Any]:
    """Aggregate probe results into totals, rates and a conclusion."""
    total = len(results)
    successes = sum(1 for r in results if r.success)
    failures = total - successes
    if failures == 0:
        conclusion = "all_passed"
    elif successes == 0:
        conclusion = "consistently_reproduced"
    else:
        conclusion = "intermittently_reproduced"

    verdicts = Counter(r.verdict.value for r in results)
    return {
        "total": total,
        "successes": successes,
        "failures": failures,
        "success_rate": round(successes / total * 100) if total else 0,
        "failure_rate": round(failures / total * 100) if total else 0,
        "avg_duration_ms": round(sum(r.duration_ms for r in results) / total, 1) if total else 0.0,
        "verdicts": dict(verdicts),
        "conclusion": conclusion,
    }
