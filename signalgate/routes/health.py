from __future__ import annotations

from fastapi import APIRouter, Request

from ..database import ping
from ..models.schemas import SystemHealth

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=SystemHealth)
async def health(request: Request) -> SystemHealth:
    database_ok = await ping(request.app.state.engine)
    transport = request.app.state.transport
    components = {
        "database": "connected" if database_ok else "unavailable",
        "transport": "enabled" if getattr(transport, "enabled", True) else "disabled",
    }
    return SystemHealth(status="ok" if database_ok else "degraded", components=components)
