"""Tests for the mock tool registry and data tools."""

import json

import pytest

from errors.exceptions import ToolError, ToolNotFoundError
from tools import get_tool, get_tool_names, invoke_tool, list_tools
from tools.registry import register_tool


def test_registered_tools():
    names = get_tool_names()
    assert "get-data" in names
    assert "echo" in names
    assert len(list_tools()) == len(names)


def test_to_mcp_shape():
    entry = get_tool("echo").to_mcp()
    assert entry["name"] == "echo"
    assert entry["description"] == "Echo back the given message"
    assert entry["inputSchema"]["required"] == ["message"]


def test_unknown_tool():
    with pytest.raises(ToolNotFoundError) as exc_info:
        get_tool("does-not-exist")
    assert exc_info.value.tool_name == "does-not-exist"


def test_sync_tool_rejected():
    with pytest.raises(TypeError, match="must be an async function"):
        @register_tool(name="sync-tool")
        def sync_tool():
            return []


async def test_get_data_size():
    content = await invoke_tool("get-data", {"size": 400 * 1024})
    (item,) = content
    assert item["type"] == "text"
    assert len(item["text"]) == 400 * 1024 + 2
    assert json.loads(item["text"]) == "x" * 400 * 1024


async def test_get_data_default_size():
    content = await invoke_tool("get-data", {})
    assert json.loads(content[0]["text"]) == "x" * 1000


async def test_get_data_ignores_unknown_arguments():
    content = await invoke_tool("get-data", {"size": 3, "message": "extra"})
    assert content[0]["text"] == '"xxx"'


async def test_get_data_fail():
    with pytest.raises(ToolError, match="failure requested"):
        await invoke_tool("get-data", {"fail": True})


async def test_get_data_negative_size():
    with pytest.raises(ToolError, match="size must be >= 0"):
        await invoke_tool("get-data", {"size": -1})


async def test_echo():
    assert await invoke_tool("echo", {"message": "hello"}) == [{"type": "text", "text": "hello"}]


async def test_echo_missing_argument():
    with pytest.raises(ToolError, match="invalid arguments"):
        await invoke_tool("echo", {})


async def test_invocations_recorded_in_metrics(metrics_collector):
    await invoke_tool("echo", {"message": "a"})
    with pytest.raises(ToolError):
        await invoke_tool("get-data", {"fail": True})

    tools = metrics_collector.snapshot()["tools"]
    assert tools["echo"]["status_breakdown"] == {"ok": 1}
    assert tools["get-data"]["status_breakdown"] == {"error": 1}
    assert tools["get-data"]["success_rate"] == 0.0
