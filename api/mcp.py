"""Minimal stateless MCP endpoint for testing large tool responses.

``POST /mcp`` speaks JSON-RPC 2.0 with plain JSON responses.  A new
:class:`McpRequestHandler` is built for every HTTP request; no handler object
is ever connected to more than one in-flight request.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from config.settings import Settings, get_settings
from errors.exceptions import ToolError, ToolNotFoundError
from models.errors import JsonRpcCode
from models.mcp import (
    CallToolParams,
    CallToolResult,
    InitializeResult,
    JsonRpcError,
    JsonRpcRequest,
    JsonRpcResponse,
    ServerInfo,
)
from tools.registry import invoke_tool, list_tools

logger = logging.getLogger(__name__)

router = APIRouter(tags=["mcp"])


class McpRequestHandler:
    """Answers one JSON-RPC request."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._methods: dict[str, Callable[[JsonRpcRequest], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    async def handle(self, rpc: JsonRpcRequest) -> JsonRpcResponse | None:
        """Return the response, or ``None`` for notifications."""
        if rpc.is_notification:
            logger.debug("MCP notification: %s", rpc.method)
            return None

        method = self._methods.get(rpc.method)
        if method is None:
            return _error(rpc.id, JsonRpcCode.METHOD_NOT_FOUND, f"Method not found: {rpc.method}")
        try:
            result = await method(rpc)
        except _InvalidParams as exc:
            return _error(rpc.id, JsonRpcCode.INVALID_PARAMS, str(exc))
        return JsonRpcResponse(id=rpc.id, result=result)

    async def _initialize(self, rpc: JsonRpcRequest) -> dict[str, Any]:
        s = self._settings
        return InitializeResult(
            protocol_version=rpc.params.get("protocolVersion") or s.mcp_protocol_version,
            server_info=ServerInfo(
                name=s.mcp_server_name,
                version=s.mcp_server_version,
                title=s.mcp_server_title,
            ),
        ).to_wire()

    async def _ping(self, rpc: JsonRpcRequest) -> dict[str, Any]:
        return {}

    async def _list_tools(self, rpc: JsonRpcRequest) -> dict[str, Any]:
        return {"tools": [tool.to_mcp() for tool in list_tools()]}

    async def _call_tool(self, rpc: JsonRpcRequest) -> dict[str, Any]:
        try:
            params = CallToolParams.model_validate(rpc.params)
        except ValidationError as exc:
            raise _InvalidParams(f"Invalid tools/call params: {exc.errors()[0]['msg']}") from exc

        logger.info("Tool called: %s", params.name)
        try:
            content = await invoke_tool(params.name, params.arguments)
        except ToolNotFoundError as exc:
            raise _InvalidParams(f"Unknown tool: {exc.tool_name}") from exc
        except ToolError as exc:
            logger.error("Error handling tool call: %s", exc)
            return CallToolResult(
                content=[{"type": "text", "text": f"Error: {exc}"}],
                is_error=True,
            ).to_wire()
        return CallToolResult(content=content).to_wire()


class _InvalidParams(Exception):
    pass


def _error(request_id: Any, code: JsonRpcCode, message: str) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, error=JsonRpcError(code=code.value, message=message))


def _error_response(status_code: int, code: JsonRpcCode, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=_error(None, code, message).to_wire(),
    )


@router.post("/mcp")
async def mcp_endpoint(request: Request):
    """Handle one MCP JSON-RPC request."""
    try:
        body = await request.json()
    except ValueError:
        return _error_response(400, JsonRpcCode.PARSE_ERROR, "Parse error")

    if not isinstance(body, dict):
        return _error_response(400, JsonRpcCode.INVALID_REQUEST, "Batch requests are not supported")
    try:
        rpc = JsonRpcRequest.model_validate(body)
    except ValidationError:
        return _error_response(400, JsonRpcCode.INVALID_REQUEST, "Invalid Request")

    logger.info("Received MCP request: %s", rpc.method)
    handler = McpRequestHandler(get_settings())
    try:
        response = await handler.handle(rpc)
    except Exception:
        logger.exception("Error handling MCP request")
        return _error_response(500, JsonRpcCode.INTERNAL_ERROR, "Internal server error")

    if response is None:
        return Response(status_code=202)
    logger.info("MCP request handled successfully")
    return JSONResponse(content=response.to_wire())
