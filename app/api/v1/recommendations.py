"""Recommendations produced by a site scan, and bulk tracking creation from them."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from app.core.deps import DBSession, TenantCtx, get_job_queue
from app.core.rate_limit import limiter
from app.models.recommendation import FunnelStage, RecommendationSeverity, RecommendationStatus
from app.models.tracking import TrackingType
from app.schemas.common import DataResponse
from app.schemas.recommendation import (
    BulkCreateRequest,
    BulkCreateResponse,
    RecommendationIds,
    RecommendationResponse,
)
from app.services.job_queue import JobQueue
from app.services.recommendation_service import RecommendationService

router = APIRouter()


def get_recommendation_service(
    db: DBSession, job_queue: Annotated[JobQueue, Depends(get_job_queue)]
) -> RecommendationService:
    return RecommendationService(db, job_queue)


Recommendations = Annotated[RecommendationService, Depends(get_recommendation_service)]


@router.get("", response_model=DataResponse[list[RecommendationResponse]], summary="List scan recommendations")
async def list_recommendations(
    customer_id: UUID,
    scan_id: UUID,
    ctx: TenantCtx,
    service: Recommendations,
    severity: RecommendationSeverity | None = None,
    tracking_type: Annotated[TrackingType | None, Query(alias="type")] = None,
    rec_status: Annotated[RecommendationStatus | None, Query(alias="status")] = None,
    funnel_stage: Annotated[FunnelStage | None, Query(alias="funnelStage")] = None,
) -> DataResponse[list[RecommendationResponse]]:
    recs = await service.list_recommendations(
        ctx,
        customer_id,
        scan_id,
        severity=severity,
        tracking_type=tracking_type,
        status=rec_status,
        funnel_stage=funnel_stage,
    )
    data = [RecommendationResponse.model_validate(r) for r in recs]
    return DataResponse[list[RecommendationResponse]](data=data)


@router.post(
    "/bulk-accept",
    response_model=DataResponse[dict[str, int]],
    summary="Accept several pending recommendations",
)
async def bulk_accept(
    customer_id: UUID,
    scan_id: UUID,
    data: RecommendationIds,
    ctx: TenantCtx,
    service: Recommendations,
) -> DataResponse[dict[str, int]]:
    accepted = await service.bulk_accept(ctx, customer_id, scan_id, data.recommendation_ids)
    return DataResponse[dict[str, int]](data=accepted)


@router.post(
    "/bulk-create-trackings",
    response_model=DataResponse[BulkCreateResponse],
    summary="Create trackings from recommendations",
    description="""
    Each recommendation is turned into a tracking independently. Items that
    cannot be created are reported in ``errors``; the call as a whole only
    fails when the customer is missing or has no Google account connected.
    """,
)
@limiter.limit("10/minute")
async def bulk_create_trackings(
    request: Request,  # noqa: ARG001
    customer_id: UUID,
    scan_id: UUID,
    data: BulkCreateRequest,
    ctx: TenantCtx,
    service: Recommendations,
) -> DataResponse[BulkCreateResponse]:
    result = await service.bulk_create_trackings(
        ctx, customer_id, scan_id, data.recommendation_ids, data.destinations
    )
    return DataResponse[BulkCreateResponse](data=BulkCreateResponse.model_validate(result))


@router.post(
    "/{recommendation_id}/accept",
    response_model=DataResponse[RecommendationResponse],
    summary="Accept a recommendation",
)
async def accept(
    customer_id: UUID,
    scan_id: UUID,
    recommendation_id: UUID,
    ctx: TenantCtx,
    service: Recommendations,
) -> DataResponse[RecommendationResponse]:
    rec = await service.accept(ctx, customer_id, scan_id, recommendation_id)
    return DataResponse[RecommendationResponse](data=RecommendationResponse.model_validate(rec))


@router.post(
    "/{recommendation_id}/reject",
    response_model=DataResponse[RecommendationResponse],
    summary="Reject a recommendation",
)
async def reject(
    customer_id: UUID,
    scan_id: UUID,
    recommendation_id: UUID,
    ctx: TenantCtx,
    service: Recommendations,
) -> DataResponse[RecommendationResponse]:
    rec = await service.reject(ctx, customer_id, scan_id, recommendation_id)
    return DataResponse[RecommendationResponse](data=RecommendationResponse.model_validate(rec))
