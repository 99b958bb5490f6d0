"""API v1 router combining all route modules."""

from fastapi import APIRouter

from app.api.v1 import (
    credentials,
    google_oauth,
    health,
    jobs,
    realtime,
    recommendations,
    scans,
    trackings,
)

api_router = APIRouter()

# Include health check routes (no prefix)
api_router.include_router(health.router)

# Tracking CRUD and sync status (requires auth)
api_router.include_router(
    trackings.router,
    prefix="/trackings",
    tags=["trackings"],
)

# Sync job polling
api_router.include_router(
    jobs.router,
    prefix="/jobs",
    tags=["jobs"],
)

# Google OAuth (callback is reached by browser redirect, no bearer token)
api_router.include_router(
    google_oauth.router,
    prefix="/google",
    tags=["google"],
)

# Site scans
api_router.include_router(
    scans.router,
    prefix="/customers/{customer_id}/scans",
    tags=["scans"],
)

# Scan recommendations
api_router.include_router(
    recommendations.router,
    prefix="/customers/{customer_id}/scans/{scan_id}/recommendations",
    tags=["recommendations"],
)

# Site logins for authenticated crawling
api_router.include_router(
    credentials.router,
    prefix="/customers/{customer_id}/credentials",
    tags=["credentials"],
)

# Server-sent events
api_router.include_router(
    realtime.router,
    prefix="/realtime",
    tags=["realtime"],
)
