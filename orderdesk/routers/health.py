"""
Health check and monitoring endpoints.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from sqlalchemy import text

from orderdesk.core.config import settings
from orderdesk.core.database import get_db_context
from orderdesk.domain.exceptions import CacheUnavailableError

router = APIRouter(tags=["health"])


@router.get("/")
async def root() -> dict:
    """API root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@router.get("/health")
async def health_check() -> dict:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.app_version,
    }


async def _check_database() -> str:
    if settings.storage_backend == "memory":
        return "in-memory"
    try:
        async with get_db_context() as session:
            await session.execute(text("SELECT 1"))
        return "connected"
    except Exception as e:
        return f"error: {str(e)}"


async def _check_cache(request: Request) -> str:
    try:
        await request.app.state.cache.ping()
        return "connected"
    except CacheUnavailableError as e:
        return f"error: {str(e)}"


@router.get("/health/ready")
async def readiness_check(request: Request) -> dict:
    """
    Readiness probe - checks if the service can handle requests.
    Verifies database and cache connectivity. A cache outage degrades
    performance but does not make the service unready.
    """
    db_status = await _check_database()
    cache_status = await _check_cache(request)

    is_ready = db_status in ("connected", "in-memory")

    return {
        "status": "ready" if is_ready else "not_ready",
        "checks": {
            "database": db_status,
            "cache": cache_status,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/live")
async def liveness_check() -> dict:
    """
    Liveness probe - checks if the service is alive.
    Simple check that doesn't verify dependencies.
    """
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
