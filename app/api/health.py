"""Health check endpoint."""

from fastapi import APIRouter, Depends

from app.core.config import settings
from app.core.deps import get_session_registry
from app.core.session_registry import SessionRegistry

router = APIRouter(tags=["health"])


@router.get("/health")
def health(registry: SessionRegistry = Depends(get_session_registry)) -> dict:
    """Return API health status and the number of live connections."""
    return {"status": "ok", "service": settings.app_name, "liveConnections": registry.total_connections}
