"""Health check and metrics endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from api.messages import get_session_router
from services.metrics import get_metrics_collector
from services.session_router import SessionRouter

router = APIRouter()


@router.get("/health")
@router.get("/api/health")
async def health(sessions: SessionRouter = Depends(get_session_router)):
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "liveConnections": sessions.live_count,
    }


@router.get("/api/metrics")
async def metrics():
    """Tool latency, connection lifecycle and dispatch counters."""
    return get_metrics_collector().snapshot()
