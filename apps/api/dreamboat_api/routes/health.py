"""
Health Check Routes

System health and status endpoints.
"""

import asyncio
import logging
from pathlib import Path

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..deps import get_queue, get_storage
from ..schemas import HealthResponse
from ..services import QueueService, StorageGateway

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


def get_version() -> str:
    """Read version from VERSION file."""
    version_file = Path(__file__).parent.parent.parent.parent.parent / "VERSION"
    if version_file.exists():
        return version_file.read_text().strip()
    return "unknown"


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    queue: QueueService = Depends(get_queue),
    storage: StorageGateway = Depends(get_storage),
) -> HealthResponse:
    """
    Health check endpoint.

    Returns overall system health and individual service statuses.
    """
    services = {}

    try:
        await db.execute(text("SELECT 1"))
        services["database"] = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {type(e).__name__}")
        services["database"] = "unhealthy"

    redis_ok = await asyncio.to_thread(queue.health_check)
    services["redis"] = "healthy" if redis_ok else "unhealthy"

    storage_ok = await asyncio.to_thread(storage.health_check)
    services["storage"] = "healthy" if storage_ok else "unhealthy"

    all_healthy = all(s == "healthy" for s in services.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        version=get_version(),
        services=services,
    )


@router.get("/health/live")
async def liveness():
    """
    Kubernetes liveness probe.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness(db: AsyncSession = Depends(get_db)):
    """
    Kubernetes readiness probe.

    Returns 200 if the application is ready to serve requests.
    """
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "ready"}
    except Exception:
        logger.error("Readiness check failed")
        return {"status": "not ready"}
