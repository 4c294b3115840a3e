"""Endpoint tests for the JSON-RPC /mcp endpoint."""

import json
from unittest.mock import patch

from api.mcp import McpRequestHandler


def _rpc(method: str, params: dict | None = None, id_: int | None = 1) -> dict:
    body = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        body["params"] = params
    if id_ is not None:
        body["id"] = id_
    return body


async def test_initialize(client):
    resp = await client.post("/mcp", json=_rpc("initialize", {"protocolVersion": "2025-03-26"}))
    assert resp.status_code == 200
    data = resp.json()
    assert data["jsonrpc"] == "2.0"
    assert data["id"] == 1
    result = data["result"]
    assert result["protocolVersion"] == "2025-03-26"
    assert result["serverInfo"]["name"] == "minimal-test-mcp"
    assert result["serverInfo"]["version"] == "1.0.0"
    assert result["capabilities"] == {"tools": {}}


async def test_initialized_notification_is_accepted(client):
    resp = await client.post("/mcp", json=_rpc("notifications/initialized", id_=None))
    assert resp.status_code == 202
    assert resp.content == b""


async def test_ping(client):
    resp = await client.post("/mcp", json=_rpc("ping", id_="abc"))
    assert resp.json() == {"jsonrpc": "2.0", "id": "abc", "result": {}}


async def test_tools_list(client):
    resp = await client.post("/mcp", json=_rpc("tools/list"))
    tools = {t["name"]: t for t in resp.json()["result"]["tools"]}
    assert {"get-data", "echo"} <= set(tools)
    assert tools["get-data"]["description"] == "Returns data (large response)"
    assert tools["get-data"]["inputSchema"]["type"] == "object"


async def test_tools_call_get_data(client):
    resp = await client.post("/mcp", json=_rpc("tools/call", {"name": "get-data", "arguments": {"size": 2048}}))
    result = resp.json()["result"]
    assert "isError" not in result or result["isError"] is False
    (item,) = result["content"]
    assert item["type"] == "text"
    assert json.loads(item["text"]) == "x" * 2048


async def test_tools_call_echo(client):
    resp = await client.post("/mcp", json=_rpc("tools/call", {"name": "echo", "arguments": {"message": "hi"}}))
    assert resp.json()["result"]["content"] == [{"type": "text", "text": "hi"}]


async def test_tool_failure_is_error_result(client):
    resp = await client.post("/mcp", json=_rpc("tools/call", {"name": "get-data", "arguments": {"fail": True}}))
    assert resp.status_code == 200
    result = resp.json()["result"]
    assert result["isError"] is True
    assert result["content"][0]["text"].startswith("Error: Tool 'get-data' failed")


async def test_missing_required_argument_is_error_result(client):
    resp = await client.post("/mcp", json=_rpc("tools/call", {"name": "echo", "arguments": {}}))
    result = resp.json()["result"]
    assert result["isError"] is True
    assert "invalid arguments" in result["content"][0]["text"]


async def test_unknown_tool_is_invalid_params(client):
    resp = await client.post("/mcp", json=_rpc("tools/call", {"name": "nope"}))
    error = resp.json()["error"]
    assert error["code"] == -32602
    assert "nope" in error["message"]


async def test_tools_call_without_name_is_invalid_params(client):
    resp = await client.post("/mcp", json=_rpc("tools/call", {"arguments": {}}))
    assert resp.json()["error"]["code"] == -32602


async def test_unknown_method(client):
    resp = await client.post("/mcp", json=_rpc("resources/list"))
    assert resp.json()["error"]["code"] == -32601


async def test_parse_error(client):
    resp = await client.post("/mcp", content=b"{not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == -32700


async def test_invalid_request(client):
    resp = await client.post("/mcp", json={"jsonrpc": "2.0", "id": 1})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == -32600


async def test_handler_crash_is_internal_error(client):
    with patch.object(McpRequestHandler, "handle", side_effect=RuntimeError("boom")):
        resp = await client.post("/mcp", json=_rpc("ping"))
    assert resp.status_code == 500
    assert resp.json() == {
        "jsonrpc": "2.0",
        "id": None,
        "error": {"code": -32603, "message": "Internal server error"},
    }


async def test_fresh_handler_per_request(client):
    created = []
    original_init = McpRequestHandler.__init__

    def tracking_init(self, settings):
        created.append(self)
        original_init(self, settings)

    with patch.object(McpRequestHandler, "__init__", tracking_init):
        await client.post("/mcp", json=_rpc("ping"))
        await client.post("/mcp", json=_rpc("ping"))
    assert len(created) == 2
    assert created[0] is not created[1]
