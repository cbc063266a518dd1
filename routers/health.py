from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request

from backend import RoomRegistry
from logging_config import get_logger
from schemas.health import HealthResponse, StatsResponse

logger = get_logger(__name__)

health_router = APIRouter(tags=["health"])


@health_router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """Liveness check for the hosting platform."""
    registry: RoomRegistry = request.app.state.registry
    stats = registry.stats()
    return HealthResponse(
        status="healthy",
        uptime=stats.uptime,
        rooms=stats.total_rooms,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@health_router.get("/stats", response_model=StatsResponse)
async def stats(request: Request):
    if not request.app.state.settings.enable_stats:
        raise HTTPException(status_code=404, detail="Stats are disabled")
    registry: RoomRegistry = request.app.state.registry
    snapshot = registry.stats()
    logger.debug(f"Stats requested: {snapshot}")
    return StatsResponse(
        total_rooms=snapshot.total_rooms,
        active_connections=snapshot.active_connections,
        rooms_with_two_peers=snapshot.rooms_with_two_peers,
        uptime=snapshot.uptime,
    )
