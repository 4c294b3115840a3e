"""Tests for the probe client verdicts, observations and summary."""

import asyncio

import httpx

from models.errors import ProbeVerdict
from models.request import FaultPlan, InvocationRequest
from models.wire_events import (
    BlockDeltaEvent,
    BlockStartEvent,
    BlockStopEvent,
    MessageHeader,
    MessageStartEvent,
    MessageStopEvent,
    TextDelta,
)
from services.probe_client import (
    OBSERVATION_RESULT_NEVER_ARRIVED,
    OBSERVATION_SILENT_TRUNCATION,
    ProbeResult,
    StreamProbe,
    summarize,
)


def _result_stream(marker: str):
    return [
        MessageStartEvent(message=MessageHeader(id="msg_x")),
        BlockStartEvent(index=0, content_block={"type": "mcp_tool_result", "tool_use_id": "t", "content": []}),
        BlockDeltaEvent(index=0, delta=TextDelta(text=f"{marker}payload")),
        BlockStopEvent(index=0),
        MessageStopEvent(),
    ]


async def _source(events, delay: float = 0.0):
    for event in events:
        if delay:
            await asyncio.sleep(delay)
        yield event


async def test_complete_probe(client):
    probe = StreamProbe(client, idle_timeout=10)
    result = await probe.run(InvocationRequest(size_bytes=100), probe_id="ok-1", expected_results=1)

    assert result.success
    assert result.verdict is ProbeVerdict.COMPLETE
    assert result.events["connect"] == 1
    assert result.events["mcp_tool_use"] == 1
    assert result.events["mcp_tool_result"] == 1
    assert result.events["message_stop"] == 1
    assert result.observation is None
    assert result.message.stop_reason == "end_turn"
    assert result.tool_results[0].startswith("[ok-1:1]")
    assert result.connection_id


async def test_truncated_large_result(client):
    request = InvocationRequest(size_bytes=400 * 1024, faults=FaultPlan(truncate_after_events=6))
    result = await StreamProbe(client).run(request, probe_id="trunc")

    assert result.verdict is ProbeVerdict.INCOMPLETE_STREAM
    assert result.observation == OBSERVATION_SILENT_TRUNCATION
    assert result.message is None
    assert len(result.partial.content) == 2
    assert result.partial.content[0].sealed
    assert not result.partial.content[1].sealed
    assert "message_stop" not in result.events


async def test_result_never_arrived(client):
    request = InvocationRequest(delay_ms=500, faults=FaultPlan(silent_timeout=True, tool_timeout_s=0.05))
    result = await StreamProbe(client).run(request, probe_id="lost")

    assert result.verdict is ProbeVerdict.INCOMPLETE_STREAM
    assert result.observation == OBSERVATION_RESULT_NEVER_ARRIVED
    assert result.events["mcp_tool_use"] == 1
    assert "mcp_tool_result" not in result.events


async def test_remote_error(client):
    request = InvocationRequest(faults=FaultPlan(fail_tool=True))
    result = await StreamProbe(client).run(request, probe_id="err")

    assert result.verdict is ProbeVerdict.REMOTE_ERROR
    assert result.events["stream_error"] == 1
    assert result.error.startswith("api_error: TOOL_EXECUTION_FAILED")
    assert result.observation is None


async def test_http_error_is_transport_error(client, sessions):
    sessions._max_connections = 1
    sessions.accept_connection()
    result = await StreamProbe(client).run(InvocationRequest(), probe_id="busy")

    assert result.verdict is ProbeVerdict.TRANSPORT_ERROR
    assert result.error.startswith("HTTP 503")
    assert "connect" not in result.events


async def test_connection_refused_is_transport_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(refuse), base_url="http://probe") as http:
        result = await StreamProbe(http).run(InvocationRequest(), probe_id="down")
    assert result.verdict is ProbeVerdict.TRANSPORT_ERROR
    assert result.events["transport_error"] == 1
    assert "ConnectError" in result.error


async def test_garbage_record_is_protocol_violation():
    body = b"event: message_start\ndata: {oops\n\n"

    def handler(request):
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://probe") as http:
        result = await StreamProbe(http).run(InvocationRequest(), probe_id="bad")
    assert result.verdict is ProbeVerdict.PROTOCOL_VIOLATION


async def test_non_string_event_type_is_protocol_violation():
    body = b'data: {"type": ["message_start"]}\n\n'

    def handler(request):
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://probe") as http:
        result = await StreamProbe(http).run(InvocationRequest(), probe_id="typed")
    assert result.verdict is ProbeVerdict.PROTOCOL_VIOLATION
    assert "must be a string" in result.error


async def test_unterminated_last_record_is_flagged():
    body = (
        b'event: message_start\ndata: {"type":"message_start","message":{"id":"m"}}\n\n'
        b'event: message_stop\ndata: {"type":"message_stop"}'
    )

    def handler(request):
        return httpx.Response(200, content=body)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://probe") as http:
        result = await StreamProbe(http).run(InvocationRequest(), probe_id="cut")
    assert result.verdict is ProbeVerdict.INCOMPLETE_STREAM
    assert result.dropped_partial_record


async def test_foreign_marker_is_cross_talk():
    result = await StreamProbe(None).run_events(
        _source(_result_stream("[other:1]")), probe_id="mine", check_markers=True
    )
    assert result.verdict is ProbeVerdict.CROSS_TALK
    assert "another probe" in result.error


async def test_unmarked_result_complete_without_marker_check():
    result = await StreamProbe(None).run_events(
        _source(_result_stream("")), probe_id="live", expected_results=1
    )
    assert result.verdict is ProbeVerdict.COMPLETE
    assert result.tool_results == ["payload"]


async def test_unmarked_result_is_cross_talk_with_marker_check():
    result = await StreamProbe(None).run_events(
        _source(_result_stream("")), probe_id="mine", check_markers=True
    )
    assert result.verdict is ProbeVerdict.CROSS_TALK


async def test_missing_result_is_cross_talk():
    result = await StreamProbe(None).run_events(
        _source(_result_stream("[mine:1]")), probe_id="mine", expected_results=2
    )
    assert result.verdict is ProbeVerdict.CROSS_TALK
    assert "expected 2" in result.error


async def test_run_events_complete():
    result = await StreamProbe(None).run_events(
        _source(_result_stream("[mine:1]")), probe_id="mine", expected_results=1
    )
    assert result.success
    assert result.events["connect"] == 1


async def test_idle_timeout():
    result = await StreamProbe(None, idle_timeout=0.05).run_events(
        _source(_result_stream("[mine:1]"), delay=0.2), probe_id="idle"
    )
    assert result.verdict is ProbeVerdict.INCOMPLETE_STREAM
    assert result.events["idle_timeout"] == 1


async def test_out_of_order_events_are_protocol_violation():
    events = [BlockStopEvent(index=0), MessageStopEvent()]
    result = await StreamProbe(None).run_events(_source(events), probe_id="x")
    assert result.verdict is ProbeVerdict.PROTOCOL_VIOLATION


def _result(verdict: ProbeVerdict, duration: float = 100.0) -> ProbeResult:
    return ProbeResult(probe_id="p", verdict=verdict, duration_ms=duration)


def test_summarize_all_passed():
    summary = summarize([_result(ProbeVerdict.COMPLETE, 100), _result(ProbeVerdict.COMPLETE, 300)])
    assert summary["conclusion"] == "all_passed"
    assert summary["success_rate"] == 100
    assert summary["avg_duration_ms"] == 200.0


def test_summarize_consistent_failure():
    summary = summarize([_result(ProbeVerdict.INCOMPLETE_STREAM)] * 3)
    assert summary["conclusion"] == "consistently_reproduced"
    assert summary["failures"] == 3
    assert summary["verdicts"] == {"incomplete_stream": 3}


def test_summarize_intermittent_failure():
    summary = summarize([
        _result(ProbeVerdict.COMPLETE),
        _result(ProbeVerdict.INCOMPLETE_STREAM),
        _result(ProbeVerdict.COMPLETE),
        _result(ProbeVerdict.REMOTE_ERROR),
    ])
    assert summary["conclusion"] == "intermittently_reproduced"
    assert summary["success_rate"] == 50
    assert summary["failure_rate"] == 50
