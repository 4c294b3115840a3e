"""JSON-RPC 2.0 / MCP models for the ``/mcp`` endpoint (camelCase on the wire)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from models.base import CamelModel


class JsonRpcRequest(BaseModel):
    jsonrpc: str = "2.0"
    id: int | str | None = None
    method: str
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        return self.id is None


class JsonRpcError(BaseModel):
    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    jsonrpc: str = "2.0"
    id: int | str | None = None
    result: Any = None
    error: JsonRpcError | None = None

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            body["error"] = self.error.model_dump(exclude_none=True)
        else:
            body["result"] = self.result
        return body


class ServerInfo(CamelModel):
    name: str
    version: str
    title: str = ""


class InitializeResult(CamelModel):
    protocol_version: str
    capabilities: dict[str, Any] = Field(default_factory=lambda: {"tools": {}})
    server_info: ServerInfo


class CallToolParams(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class CallToolResult(CamelModel):
    content: list[dict[str, Any]]
    is_error: bool = False
