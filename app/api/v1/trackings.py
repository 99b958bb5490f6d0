"""Tracking CRUD, sync status and health-check endpoints."""

from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status

from app.core.deps import DBSession, TenantCtx, get_google_clients, get_job_queue, get_realtime
from app.core.rate_limit import limiter
from app.models.tracking import TrackingStatus, TrackingType
from app.schemas.common import DataResponse, PaginatedResponse
from app.schemas.tracking import (
    BatchSyncRequest,
    BatchSyncResponse,
    HealthCheckResult,
    JobIds,
    SortField,
    TrackingCreate,
    TrackingDeleteResponse,
    TrackingListParams,
    TrackingMutationResponse,
    TrackingResponse,
    TrackingStatusResponse,
    TrackingUpdate,
)
from app.services.health_service import HealthService
from app.services.job_queue import JobQueue
from app.services.realtime import RealtimeChannel
from app.services.token_service import GoogleClientFactory
from app.services.tracking_service import EnqueuedJobs, TrackingService

router = APIRouter()


# === Helpers ===


def _job_ids(jobs: EnqueuedJobs) -> JobIds:
    return JobIds(
        gtm_sync_job_id=jobs.gtm.id if jobs.gtm else None,
        ads_sync_job_id=jobs.ads.id if jobs.ads else None,
    )


# === Dependencies ===


def get_tracking_service(
    db: DBSession, job_queue: Annotated[JobQueue, Depends(get_job_queue)]
) -> TrackingService:
    return TrackingService(db, job_queue)


Trackings = Annotated[TrackingService, Depends(get_tracking_service)]
Realtime = Annotated[RealtimeChannel, Depends(get_realtime)]


# === Endpoints ===


@router.post(
    "",
    response_model=TrackingMutationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a tracking",
    description="""
    Persist a tracking and queue its sync jobs.

    A GTM job is always queued; a Google Ads job is queued only when the
    destinations include Google Ads. 201 means the tracking was accepted for
    sync, not that it is live yet.
    """,
)
@limiter.limit("60/minute")
async def create_tracking(
    request: Request,  # noqa: ARG001
    data: TrackingCreate,
    ctx: TenantCtx,
    service: Trackings,
) -> TrackingMutationResponse:
    tracking, jobs = await service.create(ctx, data)
    return TrackingMutationResponse(
        data=TrackingResponse.model_validate(tracking),
        jobs=_job_ids(jobs),
        message="Tracking created and queued for sync",
    )


@router.get(
    "",
    response_model=PaginatedResponse[TrackingResponse],
    summary="List trackings",
)
async def list_trackings(
    ctx: TenantCtx,
    service: Trackings,
    customer_id: Annotated[UUID | None, Query(alias="customerId")] = None,
    tracking_status: Annotated[TrackingStatus | None, Query(alias="status")] = None,
    tracking_type: Annotated[TrackingType | None, Query(alias="type")] = None,
    search: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    sort_by: Annotated[SortField, Query(alias="sortBy")] = "createdAt",
    sort_order: Annotated[Literal["asc", "desc"], Query(alias="sortOrder")] = "desc",
) -> PaginatedResponse[TrackingResponse]:
    params = TrackingListParams(
        customer_id=customer_id,
        status=tracking_status,
        type=tracking_type,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    trackings, pagination = await service.list_trackings(ctx, params)
    return PaginatedResponse[TrackingResponse].model_validate(
        {"data": trackings, "pagination": pagination}
    )


@router.post(
    "/batch-sync",
    response_model=DataResponse[BatchSyncResponse],
    status_code=status.HTTP_202_ACCEPTED,
    summary="Re-sync several trackings",
    description="Progress is published on the batch channel; trackings mid-sync are skipped.",
)
@limiter.limit("10/minute")
async def batch_sync(
    request: Request,  # noqa: ARG001
    data: BatchSyncRequest,
    ctx: TenantCtx,
    service: Trackings,
    realtime: Realtime,
) -> DataResponse[BatchSyncResponse]:
    result = await service.batch_sync(ctx, data.tracking_ids, realtime)
    return DataResponse[BatchSyncResponse](data=BatchSyncResponse.model_validate(result))


@router.get("/{tracking_id}", response_model=DataResponse[TrackingResponse], summary="Get a tracking")
async def get_tracking(tracking_id: UUID, ctx: TenantCtx, service: Trackings) -> DataResponse[TrackingResponse]:
    tracking = await service.get(ctx, tracking_id)
    return DataResponse[TrackingResponse](data=TrackingResponse.model_validate(tracking))


@router.put(
    "/{tracking_id}",
    response_model=TrackingMutationResponse,
    summary="Update a tracking",
    description="Rejected with 409 while a sync is in flight. Active trackings re-sync when their remote shape changes.",
)
async def update_tracking(
    tracking_id: UUID,
    data: TrackingUpdate,
    ctx: TenantCtx,
    service: Trackings,
) -> TrackingMutationResponse:
    tracking, jobs, resynced = await service.update(ctx, tracking_id, data)
    return TrackingMutationResponse(
        data=TrackingResponse.model_validate(tracking),
        jobs=_job_ids(jobs),
        resync_triggered=resynced,
        message="Tracking updated and queued for re-sync" if resynced else "Tracking updated",
    )


@router.delete(
    "/{tracking_id}",
    response_model=TrackingDeleteResponse,
    summary="Delete a tracking",
    description="The row is removed immediately; GTM and Google Ads cleanup runs in the background.",
)
async def delete_tracking(tracking_id: UUID, ctx: TenantCtx, service: Trackings) -> TrackingDeleteResponse:
    jobs = await service.delete(ctx, tracking_id)
    return TrackingDeleteResponse(
        data={"id": str(tracking_id)},
        jobs=_job_ids(jobs),
        message="Tracking deleted",
    )


@router.get(
    "/{tracking_id}/status",
    response_model=DataResponse[TrackingStatusResponse],
    summary="Sync status of a tracking",
)
async def tracking_status(
    tracking_id: UUID,
    ctx: TenantCtx,
    service: Trackings,
    include_jobs: Annotated[bool, Query(alias="includeJobs")] = False,
) -> DataResponse[TrackingStatusResponse]:
    tracking = await service.get(ctx, tracking_id)
    jobs = service.job_states(tracking) if include_jobs else None
    summary = TrackingStatusResponse.model_validate(service.status_summary(tracking, jobs))
    return DataResponse[TrackingStatusResponse](data=summary)


@router.post(
    "/{tracking_id}/health-check",
    response_model=DataResponse[HealthCheckResult],
    summary="Reconcile a tracking against GTM and Google Ads",
)
@limiter.limit("30/minute")
async def health_check(
    request: Request,  # noqa: ARG001
    tracking_id: UUID,
    ctx: TenantCtx,
    db: DBSession,
    clients: Annotated[GoogleClientFactory, Depends(get_google_clients)],
    realtime: Realtime,
) -> DataResponse[HealthCheckResult]:
    report = await HealthService(db, clients, realtime).check(ctx, tracking_id)
    return DataResponse[HealthCheckResult](data=HealthCheckResult.model_validate(report))
