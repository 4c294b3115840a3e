"""Tests for per-connection isolation in the session router."""

import asyncio
import random

import pytest

from errors.exceptions import ChannelClosed, RouterAtCapacity
from models.wire_events import BlockDeltaEvent, MessageStopEvent, TextDelta
from services.session_router import ProcessingContext, SessionRouter


class RecordingHandler:
    """Handler that emits ``count`` tagged deltas with random delays."""

    def __init__(self, context: ProcessingContext, router: SessionRouter) -> None:
        self.context = context
        self.router = router

    async def run(self, tag: str, count: int) -> None:
        try:
            for i in range(count):
                await asyncio.sleep(random.uniform(0, 0.003))
                await self.router.dispatch(
                    self.context, BlockDeltaEvent(index=0, delta=TextDelta(text=f"{tag}:{i}"))
                )
        finally:
            await self.router.close_connection(self.context, reason="completed")


def _router(max_connections: int = 0) -> SessionRouter:
    holder: dict[str, SessionRouter] = {}
    router = SessionRouter(lambda ctx: RecordingHandler(ctx, holder["router"]), max_connections=max_connections)
    holder["router"] = router
    return router


async def _drain(router: SessionRouter, context: ProcessingContext) -> list[str]:
    return [event.delta.text async for event in router.iter_events(context)]


def test_each_connection_gets_its_own_handler():
    router = _router()
    a = router.accept_connection(label="a")
    b = router.accept_connection(label="b")
    assert a.connection_id != b.connection_id
    assert a.handler is not b.handler
    assert a.handler.context is a
    assert router.live_count == 2
    assert router.get(a.connection_id) is a


async def test_randomized_delays_never_cross_contexts():
    """Two contexts fed concurrently each see exactly their own events, in order."""
    router = _router()
    a = router.accept_connection(label="a")
    b = router.accept_connection(label="b")
    router.attach_task(a, asyncio.create_task(a.handler.run("A", 50)))
    router.attach_task(b, asyncio.create_task(b.handler.run("B", 50)))

    seen_a, seen_b = await asyncio.gather(_drain(router, a), _drain(router, b))
    assert seen_a == [f"A:{i}" for i in range(50)]
    assert seen_b == [f"B:{i}" for i in range(50)]
    assert router.live_count == 0


async def test_many_connections_isolated():
    router = _router()
    contexts = [router.accept_connection(label=f"c{i}") for i in range(30)]
    for i, ctx in enumerate(contexts):
        router.attach_task(ctx, asyncio.create_task(ctx.handler.run(f"C{i}", 5)))

    results = await asyncio.gather(*(_drain(router, ctx) for ctx in contexts))
    for i, seen in enumerate(results):
        assert seen == [f"C{i}:{n}" for n in range(5)]


async def test_close_is_idempotent(metrics_collector):
    router = _router()
    ctx = router.accept_connection()
    assert await router.close_connection(ctx, reason="completed") is True
    assert await router.close_connection(ctx, reason="client_disconnect") is False
    assert ctx.closed
    assert ctx.close_reason == "completed"
    assert metrics_collector.snapshot()["connections"]["close_reasons"] == {"completed": 1}


async def test_concurrent_close_only_one_wins():
    router = _router()
    ctx = router.accept_connection()
    results = await asyncio.gather(
        router.close_connection(ctx, reason="completed"),
        router.close_connection(ctx, reason="client_disconnect"),
        router.close_connection(ctx, reason="shutdown"),
    )
    assert sorted(results) == [False, False, True]
    assert router.live_count == 0


async def test_dispatch_after_close_fails_fast(metrics_collector):
    router = _router()
    ctx = router.accept_connection()
    await router.close_connection(ctx)
    with pytest.raises(ChannelClosed) as exc_info:
        await router.dispatch(ctx, MessageStopEvent())
    assert exc_info.value.connection_id == ctx.connection_id
    assert metrics_collector.snapshot()["events"]["dispatch_failures"] == 1


async def test_events_before_close_are_still_delivered():
    router = _router()
    ctx = router.accept_connection()
    await router.dispatch(ctx, MessageStopEvent())
    await router.close_connection(ctx)

    assert await router.next_event(ctx) == MessageStopEvent()
    assert await router.next_event(ctx) is None
    # Later reads keep seeing the end of the channel.
    assert await router.next_event(ctx) is None


async def test_next_event_times_out_when_idle():
    router = _router()
    ctx = router.accept_connection()
    with pytest.raises(asyncio.TimeoutError):
        await router.next_event(ctx, timeout=0.01)


async def test_close_cancels_attached_task():
    router = _router()
    ctx = router.accept_connection()
    task = asyncio.create_task(asyncio.sleep(10))
    router.attach_task(ctx, task)

    await router.close_connection(ctx, reason="client_disconnect")
    with pytest.raises(asyncio.CancelledError):
        await task


async def test_close_from_own_task_does_not_cancel_itself():
    router = _router()
    ctx = router.accept_connection()
    task = asyncio.create_task(ctx.handler.run("solo", 3))
    router.attach_task(ctx, task)
    await task
    assert not task.cancelled()
    assert ctx.close_reason == "completed"


async def test_capacity_limit():
    router = _router(max_connections=2)
    first = router.accept_connection()
    router.accept_connection()
    with pytest.raises(RouterAtCapacity) as exc_info:
        router.accept_connection()
    assert exc_info.value.limit == 2

    await router.close_connection(first)
    assert router.accept_connection() is not None


async def test_close_all():
    router = _router()
    for _ in range(3):
        router.accept_connection()
    assert await router.close_all() == 3
    assert router.live_count == 0
