"""Concurrent connection probe — does content ever cross connections?

Opens N connections at once, each asking for K tool results.  Every result
is tagged with its probe's marker, so a result delivered to the wrong
connection (or a connection missing results) shows up as ``cross_talk``.

Usage (server started with ``python main.py``)::

    python scripts/concurrent_probe.py --concurrency 30 --results 5

Exits with status 1 if any connection failed.
"""

import argparse
import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import httpx  # noqa: E402

from config.settings import get_settings  # noqa: E402
from models.request import InvocationRequest  # noqa: E402
from services.middleware import configure_logging  # noqa: E402
from services.probe_client import StreamProbe, summarize  # noqa: E402


async def run(args: argparse.Namespace) -> bool:
    request = InvocationRequest(
        tool_calls=args.results,
        size_bytes=args.size_kb * 1024,
        delay_ms=args.delay_ms,
    )
    limits = httpx.Limits(max_connections=args.concurrency, max_keepalive_connections=0)
    async with httpx.AsyncClient(base_url=args.base_url, timeout=None, limits=limits) as client:
        probe = StreamProbe(client, idle_timeout=args.idle_timeout)
        results = await asyncio.gather(*(
            probe.run(request, probe_id=f"conc-{i}", expected_results=args.results)
            for i in range(args.concurrency)
        ))

    for result in results:
        if not result.success:
            print(f"  {result.probe_id} [{result.connection_id}]: {result.verdict.value} — {result.error}")

    summary = summarize(results)
    cross_talk = summary["verdicts"].get("cross_talk", 0)
    print(f"\nConnections: {summary['total']}")
    print(f"Complete: {summary['successes']} ({summary['success_rate']}%)")
    print(f"Cross-talk: {cross_talk}")
    print(f"Verdicts: {summary['verdicts']}")
    print(f"Average duration: {summary['avg_duration_ms']:.0f}ms")
    print(f"Conclusion: {summary['conclusion']}")
    return summary["failures"] == 0


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Probe many simultaneous streams for cross-talk")
    parser.add_argument("--base-url", default=settings.probe_base_url)
    parser.add_argument("--concurrency", type=int, default=settings.probe_concurrency)
    parser.add_argument("--results", type=int, default=5, help="Tool results per connection")
    parser.add_argument("--size-kb", type=int, default=1)
    parser.add_argument("--delay-ms", type=int, default=None)
    parser.add_argument("--idle-timeout", type=float, default=settings.probe_idle_timeout)
    args = parser.parse_args()

    configure_logging(settings.log_level)
    ok = asyncio.run(run(args))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
