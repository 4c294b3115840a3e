"""Session router — one isolated processing context per client connection.

Every accepted connection gets its own :class:`ProcessingContext`: its own
output channel and its own handler instance, built by the router's handler
factory.  Nothing mutable is shared between contexts, so an event produced
while handling one connection has no path onto another connection's channel.

Lifecycle::

    ctx = router.accept_connection()
    router.attach_task(ctx, asyncio.create_task(ctx.handler.run(request)))
    while (event := await router.next_event(ctx)) is not None:
        ...  # write to the transport
    await router.close_connection(ctx, reason="client_disconnect")

:meth:`SessionRouter.close_connection` may be called from the completion path
and the disconnect path at the same time; only the first call does anything.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, AsyncIterator, Callable

from errors.exceptions import ChannelClosed, RouterAtCapacity
from models.wire_events import WireEvent
from services.metrics import get_metrics_collector

logger = logging.getLogger(__name__)

# Marks the end of a channel once everything before it has been read.
_CLOSED = object()


class ProcessingContext:
    """Server-side state for exactly one connection."""

    def __init__(self, connection_id: str, label: str = "") -> None:
        self.connection_id = connection_id
        self.label = label or connection_id
        self.created_at = time.monotonic()
        self.handler: Any = None
        self.dispatched = 0
        self.close_reason: str | None = None
        self._channel: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._task: asyncio.Task | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        state = f"closed:{self.close_reason}" if self._closed else "open"
        return f"<ProcessingContext {self.connection_id} {state} dispatched={self.dispatched}>"


class SessionRouter:
    """Accept connections and route each context's events to its own channel.

    Args:
        handler_factory: Called once per accepted connection with the new
            context; the returned object becomes ``context.handler``.
        max_connections: Live-connection limit, ``0`` for unlimited.
    """

    def __init__(
        self,
        handler_factory: Callable[[ProcessingContext], Any],
        *,
        max_connections: int = 0,
    ) -> None:
        self._handler_factory = handler_factory
        self._max_connections = max_connections
        self._live: dict[str, ProcessingContext] = {}

    @property
    def live_count(self) -> int:
        return len(self._live)

    def get(self, connection_id: str) -> ProcessingContext | None:
        return self._live.get(connection_id)

    # ── Lifecycle ───────────────────────────────────────────

    def accept_connection(self, label: str | None = None) -> ProcessingContext:
        """Allocate a fresh context with its own channel and handler.

        Raises:
            RouterAtCapacity: ``max_connections`` contexts are already live.
        """
        if self._max_connections and len(self._live) >= self._max_connections:
            logger.warning(
                "Connection refused — %d live connections (limit %d)",
                len(self._live),
                self._max_connections,
            )
            raise RouterAtCapacity(self._max_connections)

        connection_id = uuid.uuid4().hex[:12]
        context = ProcessingContext(connection_id, label=label or "")
        context.handler = self._handler_factory(context)
        self._live[connection_id] = context
        get_metrics_collector().record_connection_opened()
        logger.info(
            "Connection %s accepted (label=%s, live=%d)",
            connection_id,
            context.label,
            len(self._live),
        )
        return context

    def attach_task(self, context: ProcessingContext, task: asyncio.Task) -> None:
        """Bind the task producing events for ``context``; it is cancelled on close."""
        context._task = task

    async def close_connection(self, context: ProcessingContext, reason: str = "completed") -> bool:
        """Release ``context``.  Idempotent.

        Returns:
            ``True`` for the call that actually closed the context, ``False``
            for every later call.
        """
        # Check-and-set with no await in between: exactly one caller wins.
        if context._closed:
            return False
        context._closed = True
        context.close_reason = reason
        self._live.pop(context.connection_id, None)
        context._channel.put_nowait(_CLOSED)

        task = context._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        get_metrics_collector().record_connection_closed(reason)
        logger.info(
            "Connection %s closed (reason=%s, dispatched=%d, live=%d)",
            context.connection_id,
            reason,
            context.dispatched,
            len(self._live),
        )
        return True

    async def close_all(self, reason: str = "shutdown") -> int:
        """Close every live context, e.g. on application shutdown."""
        contexts = list(self._live.values())
        for context in contexts:
            await self.close_connection(context, reason=reason)
        return len(contexts)

    # ── Event flow ──────────────────────────────────────────

    async def dispatch(self, context: ProcessingContext, event: WireEvent) -> None:
        """Append ``event`` to the channel owned by ``context``.

        Raises:
            ChannelClosed: the connection has already terminated.
        """
        if context._closed:
            get_metrics_collector().record_dispatch_failure()
            raise ChannelClosed(context.connection_id)
        await context._channel.put(event)
        context.dispatched += 1
        get_metrics_collector().record_dispatch()

    async def next_event(
        self,
        context: ProcessingContext,
        timeout: float | None = None,
    ) -> WireEvent | None:
        """Read the next event from ``context``'s channel.

        Events dispatched before the close are always delivered first.

        Returns:
            The next event, or ``None`` once the channel is closed and drained.

        Raises:
            asyncio.TimeoutError: nothing arrived within ``timeout`` seconds.
        """
        if timeout is None:
            item = await context._channel.get()
        else:
            item = await asyncio.wait_for(context._channel.get(), timeout=timeout)
        if item is _CLOSED:
            # Leave the marker in place so later reads also see the end.
            context._channel.put_nowait(_CLOSED)
            return None
        return item

    async def iter_events(self, context: ProcessingContext) -> AsyncIterator[WireEvent]:
        """Yield ``context``'s events in dispatch order until it is closed."""
        while True:
            event = await self.next_event(context)
            if event is None:
                return
            yield event
