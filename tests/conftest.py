"""Shared pytest fixtures for the stream completion probe tests.

Provides:
- ``metrics_collector``: the process collector, reset around every test
- ``settings``: Settings isolated from any local ``.env``
- ``sessions``: a fresh SessionRouter with per-connection producers
- ``client``: httpx.AsyncClient over ASGITransport, wired to ``sessions``
"""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure mock tools are registered at test startup
import tools  # noqa: F401

from api.messages import get_session_router
from config.settings import Settings
from main import app
from services.message_producer import build_session_router
from services.metrics import MetricsCollector, get_metrics_collector
from services.session_router import SessionRouter


@pytest.fixture(autouse=True)
def metrics_collector() -> MetricsCollector:
    """Process-wide collector, reset so counts are per test."""
    collector = get_metrics_collector()
    collector.reset()
    yield collector
    collector.reset()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, max_connections=0, heartbeat_interval=15.0)


@pytest.fixture
async def sessions(settings: Settings) -> SessionRouter:
    router = build_session_router(settings)
    yield router
    await router.close_all(reason="test_teardown")


@pytest.fixture
async def client(sessions: SessionRouter):
    app.dependency_overrides[get_session_router] = lambda: sessions
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_session_router, None)
