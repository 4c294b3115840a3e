"""Request ID tracking (pure ASGI, streaming-safe) and log stamping."""

from __future__ import annotations

import contextvars
import logging
import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

# Request ID of the HTTP request being handled in the current task.
current_request_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "current_request_id", default="-"
)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s]: %(message)s"


class RequestIdMiddleware:
    """Inject a unique request ID into every HTTP request/response.

    Uses pure ASGI implementation (no BaseHTTPMiddleware) to avoid
    breaking SSE streaming responses.

    If the client sends ``X-Request-ID``, it is reused; otherwise a short
    UUID is generated.  The ID is returned in the response headers, stored
    in ``scope["state"]`` and bound to :data:`current_request_id` so every
    log line written while serving the request carries it.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or str(uuid.uuid4())[:8]

        scope.setdefault("state", {})
        scope["state"]["request_id"] = request_id

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers
            await send(message)

        token = current_request_id.set(request_id)
        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            current_request_id.reset(token)


class RequestIdFilter(logging.Filter):
    """Stamp ``record.request_id`` from :data:`current_request_id`."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = current_request_id.get()
        return True


def configure_logging(level: str = "INFO") -> None:
    """Install a stream handler whose records carry the request ID."""
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing.formatter, logging.Formatter) and existing.formatter._fmt == LOG_FORMAT:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())
