"""In-memory metrics for the mock server.

Collects per-tool latency and status, connection lifecycle counts and
dispatch counts so the drivers (and ``GET /api/metrics``) can see what the
server did during a run.
"""

from __future__ import annotations

import math
import threading
from collections import defaultdict


def _percentile(values: list[float], p: float) -> float:
    if not values:
        return 0.0
    if len(values) == 1:
        return values[0]
    ordered = sorted(values)
    pos = (len(ordered) - 1) * p
    lo = math.floor(pos)
    hi = math.ceil(pos)
    if lo == hi:
        return ordered[lo]
    frac = pos - lo
    return ordered[lo] * (1 - frac) + ordered[hi] * frac


class MetricsCollector:
    """Thread-safe in-memory metrics collector."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tool_latencies: dict[str, list[float]] = defaultdict(list)
        self._tool_status: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._connections_opened = 0
        self._connections_closed: dict[str, int] = defaultdict(int)
        self._events_dispatched = 0
        self._dispatch_failures = 0

    def record_tool_call(self, *, tool_name: str, status: str, latency_ms: float) -> None:
        with self._lock:
            self._tool_latencies[tool_name].append(float(latency_ms))
            self._tool_status[tool_name][status] += 1

    def record_connection_opened(self) -> None:
        with self._lock:
            self._connections_opened += 1

    def record_connection_closed(self, reason: str) -> None:
        with self._lock:
            self._connections_closed[reason] += 1

    def record_dispatch(self) -> None:
        with self._lock:
            self._events_dispatched += 1

    def record_dispatch_failure(self) -> None:
        with self._lock:
            self._dispatch_failures += 1

    def snapshot(self) -> dict:
        with self._lock:
            tool_metrics = {}
            for tool, latencies in self._tool_latencies.items():
                status_map = self._tool_status.get(tool, {})
                total = sum(status_map.values())
                ok_count = status_map.get("ok", 0)
                tool_metrics[tool] = {
                    "count": total,
                    "success_rate": (ok_count / total) if total else 0.0,
                    "latency_p50_ms": round(_percentile(latencies, 0.5), 2),
                    "latency_p95_ms": round(_percentile(latencies, 0.95), 2),
                    "status_breakdown": dict(status_map),
                }

            closed_total = sum(self._connections_closed.values())
            return {
                "tools": tool_metrics,
                "connections": {
                    "opened": self._connections_opened,
                    "closed": closed_total,
                    "live": self._connections_opened - closed_total,
                    "close_reasons": dict(self._connections_closed),
                },
                "events": {
                    "dispatched": self._events_dispatched,
                    "dispatch_failures": self._dispatch_failures,
                },
            }

    def reset(self) -> None:
        with self._lock:
            self._tool_latencies.clear()
            self._tool_status.clear()
            self._connections_opened = 0
            self._connections_closed.clear()
            self._events_dispatched = 0
            self._dispatch_failures = 0


_metrics_collector = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _metrics_collector
