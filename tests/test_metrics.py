"""Tests for the in-memory metrics collector."""

from services.metrics import MetricsCollector


def test_tool_latency_percentiles():
    collector = MetricsCollector()
    for latency in (10, 20, 30, 40, 50):
        collector.record_tool_call(tool_name="get-data", status="ok", latency_ms=latency)
    collector.record_tool_call(tool_name="get-data", status="error", latency_ms=60)

    tool = collector.snapshot()["tools"]["get-data"]
    assert tool["count"] == 6
    assert tool["latency_p50_ms"] == 35.0
    assert tool["status_breakdown"] == {"ok": 5, "error": 1}
    assert round(tool["success_rate"], 3) == 0.833


def test_connection_lifecycle_counts():
    collector = MetricsCollector()
    for _ in range(3):
        collector.record_connection_opened()
    collector.record_connection_closed("completed")
    collector.record_connection_closed("client_disconnect")

    connections = collector.snapshot()["connections"]
    assert connections == {
        "opened": 3,
        "closed": 2,
        "live": 1,
        "close_reasons": {"completed": 1, "client_disconnect": 1},
    }


def test_dispatch_counts_and_reset():
    collector = MetricsCollector()
    collector.record_dispatch()
    collector.record_dispatch()
    collector.record_dispatch_failure()
    assert collector.snapshot()["events"] == {"dispatched": 2, "dispatch_failures": 1}

    collector.reset()
    snapshot = collector.snapshot()
    assert snapshot["events"] == {"dispatched": 0, "dispatch_failures": 0}
    assert snapshot["tools"] == {}
    assert snapshot["connections"]["opened"] == 0


def test_empty_snapshot():
    snapshot = MetricsCollector().snapshot()
    assert snapshot["tools"] == {}
    assert snapshot["connections"]["live"] == 0
