"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.deps import DBSession, RedisDep
from app.schemas.common import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(db: DBSession, redis: RedisDep) -> HealthResponse:
    """
    Health check endpoint.

    Checks database and Redis connectivity. Redis backs both the sync job
    queue and the realtime channel, so the API is unhealthy without it.
    """
    health_status: dict[str, Any] = {
        "status": "healthy",
        "version": settings.version,
        "environment": settings.environment,
        "checks": {},
    }

    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except SQLAlchemyError as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"unhealthy: {e!s}"

    try:
        await redis.ping()
        health_status["checks"]["redis"] = "healthy"
    except (RedisError, OSError) as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["redis"] = f"unhealthy: {e!s}"

    return HealthResponse.model_validate(health_status)


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """Liveness check: the process is up."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(db: DBSession) -> dict[str, str]:
    """Readiness check: the database answers."""
    await db.execute(text("SELECT 1"))
    return {"status": "ready"}
