"""Health check endpoints."""

from fastapi import APIRouter, Depends, Request

from relay.api.home import get_app_settings
from relay.core.config import Settings

router = APIRouter()


@router.get("/")
async def health_check(settings: Settings = Depends(get_app_settings)) -> dict:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/ready")
async def readiness_check(request: Request) -> dict:
    """Readiness check reporting broker connectivity without connecting."""
    if request.app.state.broker.is_connected:
        return {"status": "ready", "broker": "connected"}
    return {"status": "not_ready", "broker": "disconnected"}
