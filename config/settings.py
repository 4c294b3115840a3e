"""Pydantic Settings — typed configuration with .env auto-loading."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Harness configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    service_port: int = 3031
    cors_origins: list[str] = ["*"]
    debug: bool = False
    log_level: str = "INFO"

    # ── Session routing ──────────────────────────────────────
    max_connections: int = 100  # 0 = unlimited
    heartbeat_interval: float = 15.0  # seconds of silence before a ping record

    # ── Mock tools ───────────────────────────────────────────
    # Keep small for race testing (the delay matters more than size);
    # raise to 400 * 1024 or more for large-response testing.
    tool_response_size: int = 1000
    tool_delay_ms: int = 0
    tool_timeout_s: float = 60.0
    tool_calls_per_request: int = 1
    result_chunk_size: int = 16 * 1024

    # ── MCP endpoint ─────────────────────────────────────────
    mcp_server_name: str = "minimal-test-mcp"
    mcp_server_title: str = "Minimal Test MCP"
    mcp_server_version: str = "1.0.0"
    mcp_protocol_version: str = "2025-03-26"

    # ── Probe drivers ────────────────────────────────────────
    probe_base_url: str = "http://localhost:3031"
    probe_idle_timeout: float = 120.0  # transport-level idle deadline
    probe_iterations: int = 5
    probe_concurrency: int = 30
    probe_pause_s: float = 2.0

    # ── Live mode (real Anthropic API + MCP connector) ───────
    anthropic_api_key: str = ""
    mcp_url: str = ""
    live_model: str = "claude-haiku-4-5-20251001"
    live_max_tokens: int = 2048
    thinking_budget_tokens: int = 1024


@lru_cache
def get_settings() -> Settings:
    """Singleton accessor for application settings."""
    return Settings()
