"""Large tool response probe — does a big MCP result ever arrive?

Runs N sequential probes, each a single tool call returning ``--size-kb`` KB,
and reports how every stream ended plus a summary across iterations.

Against the mock server (start it first with ``python main.py``)::

    python scripts/large_response_probe.py --size-kb 400 --iterations 5

Against the real Anthropic API, with the MCP server reachable at MCP_URL::

    ANTHROPIC_API_KEY=... MCP_URL=https://... python scripts/large_response_probe.py --live

Exits with status 1 if any iteration failed.
"""

import argparse
import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import anthropic  # noqa: E402
import httpx  # noqa: E402

from config.settings import get_settings  # noqa: E402
from models.request import FaultPlan, InvocationRequest  # noqa: E402
from services.anthropic_source import stream_live_events  # noqa: E402
from services.middleware import configure_logging  # noqa: E402
from services.probe_client import ProbeResult, StreamProbe, summarize  # noqa: E402

RULE = "=" * 70


def print_result(index: int, result: ProbeResult) -> None:
    counts = result.events
    print(f"\nTEST #{index}: {result.probe_id}")
    print(f"  Duration: {result.duration_ms:.0f}ms")
    print(f"  Connected: {'yes' if counts.get('connect') else 'NO'}")
    print(f"  mcp_tool_use detected: {'yes' if counts.get('mcp_tool_use') else 'NO'}")
    print(f"  mcp_tool_result received: {'yes' if counts.get('mcp_tool_result') else 'NO'}")
    print(f"  thinking detected: {'yes' if counts.get('thinking') else 'NO'}")
    print(f"  text detected: {'yes' if counts.get('text') else 'NO'}")
    print(f"  message_stop: {'yes' if counts.get('message_stop') else 'NO'}")
    print(f"  stream_error event: {'YES' if counts.get('stream_error') else 'no'}")
    print(f"  idle timeout: {'YES' if counts.get('idle_timeout') else 'no'}")
    if result.message is not None:
        print(f"  Final message content blocks: {len(result.message.content)}")
        print(f"  Stop reason: {result.message.stop_reason}")
    elif result.partial is not None:
        sealed = sum(1 for b in result.partial.content if b.sealed)
        print(f"  Partial message blocks: {len(result.partial.content)} ({sealed} sealed)")
    if result.error:
        print(f"  Error: {result.error}")
    if result.observation:
        print(f"\n  KEY OBSERVATION: {result.observation}")
    print(f"\nVERDICT: {'SUCCESS' if result.success else 'FAILURE'} ({result.verdict.value})")


async def run_mock(args: argparse.Namespace) -> list[ProbeResult]:
    request = InvocationRequest(
        size_bytes=args.size_kb * 1024,
        delay_ms=args.delay_ms,
        thinking={"type": "enabled", "budget_tokens": 1024},
        mcp_servers=[{"type": "url", "url": f"{args.base_url}/mcp", "name": "Test MCP"}],
        faults=FaultPlan(
            truncate_after_events=args.truncate_after,
            silent_timeout=args.silent_timeout,
            tool_timeout_s=args.tool_timeout,
        ),
    )
    results = []
    async with httpx.AsyncClient(base_url=args.base_url, timeout=None) as client:
        probe = StreamProbe(client, idle_timeout=args.idle_timeout)
        for i in range(1, args.iterations + 1):
            result = await probe.run(request, probe_id=f"large-{i}", expected_results=1)
            print_result(i, result)
            results.append(result)
            if i < args.iterations:
                await asyncio.sleep(args.pause)
    return results


async def run_live(args: argparse.Namespace) -> list[ProbeResult]:
    settings = get_settings()
    if not settings.anthropic_api_key:
        print("ERROR: ANTHROPIC_API_KEY not set")
        sys.exit(1)
    if not settings.mcp_url:
        print("ERROR: MCP_URL not set")
        sys.exit(1)

    client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    probe = StreamProbe(None, idle_timeout=args.idle_timeout)
    results = []
    for i in range(1, args.iterations + 1):
        result = await probe.run_events(
            stream_live_events(client, settings),
            probe_id=f"live-{i}",
            transport_errors=(httpx.TransportError, anthropic.APIConnectionError),
        )
        print_result(i, result)
        results.append(result)
        if i < args.iterations:
            await asyncio.sleep(args.pause)
    await client.close()
    return results


def print_summary(results: list[ProbeResult]) -> None:
    summary = summarize(results)
    print(f"\n\n{RULE}\nSUMMARY\n{RULE}")
    print(f"\nTotal tests: {summary['total']}")
    print(f"Successes: {summary['successes']} ({summary['success_rate']}%)")
    print(f"Failures: {summary['failures']} ({summary['failure_rate']}%)")
    print(f"Average duration: {summary['avg_duration_ms']:.0f}ms")
    print(f"Verdicts: {summary['verdicts']}")
    conclusions = {
        "all_passed": "All tests passed — the incomplete stream did not reproduce.",
        "consistently_reproduced": "Every test failed — the incomplete stream reproduces consistently.",
        "intermittently_reproduced": "Some tests failed — the incomplete stream reproduces intermittently.",
    }
    print(f"\nCONCLUSION: {conclusions[summary['conclusion']]}")


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Probe streams carrying a large tool result")
    parser.add_argument("--live", action="store_true", help="Stream from the real Anthropic API")
    parser.add_argument("--base-url", default=settings.probe_base_url)
    parser.add_argument("--iterations", type=int, default=settings.probe_iterations)
    parser.add_argument("--size-kb", type=int, default=400)
    parser.add_argument("--delay-ms", type=int, default=None)
    parser.add_argument("--pause", type=float, default=settings.probe_pause_s)
    parser.add_argument("--idle-timeout", type=float, default=settings.probe_idle_timeout)
    parser.add_argument("--truncate-after", type=int, default=None,
                        help="Server closes silently after N events")
    parser.add_argument("--silent-timeout", action="store_true",
                        help="Server drops the stream without an error event on tool timeout")
    parser.add_argument("--tool-timeout", type=float, default=None)
    args = parser.parse_args()

    configure_logging(settings.log_level)
    print(f"{RULE}\nLARGE RESPONSE PROBE ({'live' if args.live else args.base_url})\n{RULE}")
    print(f"Iterations: {args.iterations}")

    results = asyncio.run(run_live(args) if args.live else run_mock(args))
    print_summary(results)
    sys.exit(0 if all(r.success for r in results) else 1)


if __name__ == "__main__":
    main()
