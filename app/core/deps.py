"""Dependency injection for FastAPI routes."""

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

# Re-export auth dependencies for convenience
from app.core.auth import CurrentUser, get_current_user
from app.core.config import settings
from app.core.database import get_async_session
from app.models.tenant import Tenant

if TYPE_CHECKING:
    from app.services.job_queue import JobQueue
    from app.services.realtime import RealtimeChannel
    from app.services.token_service import GoogleClientFactory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Alias for get_async_session so tests can override a single dependency."""
    async for session in get_async_session():
        yield session


# Database session dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]


# Shared Redis connection pool
_redis_pool: aioredis.ConnectionPool | None = None


def _get_redis_pool() -> aioredis.ConnectionPool:
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is None:
        _redis_pool = aioredis.ConnectionPool.from_url(
            str(settings.redis_url), decode_responses=True
        )
    return _redis_pool


async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    """Yield a Redis client from the shared connection pool."""
    pool = _get_redis_pool()
    r = aioredis.Redis(connection_pool=pool)
    try:
        yield r
    finally:
        await r.aclose()


RedisDep = Annotated[aioredis.Redis, Depends(get_redis)]


# === Tenant context ===


@dataclass(frozen=True)
class TenantContext:
    """Resolved caller identity; every service query is scoped by tenant_id."""

    tenant_id: UUID
    user_id: str
    org_id: str


def get_user_organization_id(user: dict[str, Any]) -> str:
    """Extract organization ID from the authenticated user's JWT payload."""
    org_id = user.get("activeOrganizationId")
    if not org_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No active organization. Please select or create an organization.",
        )
    return str(org_id)


async def get_tenant_context(user: CurrentUser, db: DBSession) -> TenantContext:
    """Map the JWT organization to a Tenant row, provisioning it on first use."""
    org_id = get_user_organization_id(user)
    user_id = user.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
        )

    result = await db.execute(select(Tenant).where(Tenant.external_org_id == org_id))
    tenant = result.scalar_one_or_none()
    if tenant is None:
        tenant = Tenant(
            external_org_id=org_id,
            name=str(user.get("activeOrganizationName") or org_id),
        )
        db.add(tenant)
        await db.commit()

    return TenantContext(tenant_id=tenant.id, user_id=str(user_id), org_id=org_id)


TenantCtx = Annotated[TenantContext, Depends(get_tenant_context)]


# === Injected collaborators ===


def get_job_queue(request: Request) -> "JobQueue":
    """Job queue created in the app lifespan."""
    job_queue = getattr(request.app.state, "job_queue", None)
    if job_queue is None:
        from app.services.job_queue import JobQueue
        from app.workers.celery_app import celery_app

        job_queue = JobQueue(celery_app)
        request.app.state.job_queue = job_queue
    return job_queue  # type: ignore[no-any-return]


def get_realtime(redis: RedisDep) -> "RealtimeChannel":
    from app.services.realtime import RealtimeChannel

    return RealtimeChannel(redis)


def get_google_clients(db: DBSession) -> "GoogleClientFactory":
    from app.services.token_service import GoogleClientFactory

    return GoogleClientFactory(db)


__all__ = [
    "CurrentUser",
    "DBSession",
    "RedisDep",
    "TenantContext",
    "TenantCtx",
    "get_current_user",
    "get_db",
    "get_google_clients",
    "get_job_queue",
    "get_realtime",
    "get_redis",
    "get_tenant_context",
    "get_user_organization_id",
]
