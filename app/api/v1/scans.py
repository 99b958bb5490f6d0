"""Site scan endpoints: start, chunked crawl, niche confirmation and finalize."""

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from app.core.deps import DBSession, TenantCtx, get_realtime
from app.core.rate_limit import SCAN_CHUNK_LIMIT, limiter
from app.schemas.common import DataResponse
from app.schemas.scan import (
    ConfirmNicheRequest,
    ProcessChunkRequest,
    ScanDetailResponse,
    ScanResponse,
    ScanStartRequest,
)
from app.services.credential_service import SiteLogin
from app.services.realtime import RealtimeChannel
from app.services.scan_service import ScanService

router = APIRouter()


# === Dependencies ===


def get_scan_service(
    db: DBSession, realtime: Annotated[RealtimeChannel, Depends(get_realtime)]
) -> ScanService:
    return ScanService(db, realtime)


Scans = Annotated[ScanService, Depends(get_scan_service)]


# === Endpoints ===


@router.get("", response_model=DataResponse[list[ScanResponse]], summary="Recent scans for a customer")
async def list_scans(customer_id: UUID, ctx: TenantCtx, service: Scans) -> DataResponse[list[ScanResponse]]:
    scans = await service.list_scans(ctx, customer_id)
    return DataResponse[list[ScanResponse]](data=[ScanResponse.model_validate(s) for s in scans])


@router.post(
    "",
    response_model=DataResponse[ScanResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Start a site scan",
    description="""
    Read robots.txt and sitemaps and seed the crawl queue.

    The crawl itself is driven by the client through process-chunk calls so
    that no single request runs longer than a few seconds. Only one active
    scan per customer is allowed.
    """,
)
@limiter.limit("10/minute")
async def start_scan(
    request: Request,  # noqa: ARG001
    customer_id: UUID,
    data: ScanStartRequest,
    ctx: TenantCtx,
    service: Scans,
) -> DataResponse[ScanResponse]:
    scan = await service.start(
        ctx,
        customer_id,
        website_url=data.website_url,
        max_pages=data.max_pages,
        max_depth=data.max_depth,
    )
    return DataResponse[ScanResponse](data=ScanResponse.model_validate(scan), message="Scan started")


@router.get("/{scan_id}", response_model=DataResponse[ScanDetailResponse], summary="Scan with pages")
async def get_scan(
    customer_id: UUID, scan_id: UUID, ctx: TenantCtx, service: Scans
) -> DataResponse[ScanDetailResponse]:
    detail = ScanDetailResponse.model_validate(await service.get(ctx, customer_id, scan_id))
    return DataResponse[ScanDetailResponse](data=detail)


@router.post(
    "/{scan_id}/process-chunk",
    response_model=DataResponse[dict[str, Any]],
    summary="Advance a scan phase by one chunk",
    description="Returns hasMore=false once the phase is done; repeat calls after that are no-ops.",
)
@limiter.limit(SCAN_CHUNK_LIMIT)
async def process_chunk(
    request: Request,  # noqa: ARG001
    customer_id: UUID,
    scan_id: UUID,
    data: ProcessChunkRequest,
    ctx: TenantCtx,
    service: Scans,
) -> DataResponse[dict[str, Any]]:
    login = None
    if data.credentials is not None:
        login = SiteLogin(
            username=data.credentials.username,
            password=data.credentials.password,
            login_url=data.credentials.login_url,
        )
    result = await service.process_chunk(
        ctx, customer_id, scan_id, data.phase, chunk_size=data.chunk_size, credentials=login
    )
    return DataResponse[dict[str, Any]](data=result)


@router.post(
    "/{scan_id}/detect-niche",
    response_model=DataResponse[dict[str, Any]],
    summary="Classify the site's business niche",
)
async def detect_niche(
    customer_id: UUID, scan_id: UUID, ctx: TenantCtx, service: Scans
) -> DataResponse[dict[str, Any]]:
    return DataResponse[dict[str, Any]](data=await service.detect_niche(ctx, customer_id, scan_id))


@router.post(
    "/{scan_id}/confirm-niche",
    response_model=DataResponse[ScanResponse],
    summary="Confirm or override the niche",
)
async def confirm_niche(
    customer_id: UUID,
    scan_id: UUID,
    data: ConfirmNicheRequest,
    ctx: TenantCtx,
    service: Scans,
) -> DataResponse[ScanResponse]:
    scan = await service.confirm_niche(ctx, customer_id, scan_id, data.niche)
    return DataResponse[ScanResponse](data=ScanResponse.model_validate(scan))


@router.post(
    "/{scan_id}/finalize",
    response_model=DataResponse[dict[str, Any]],
    summary="Score readiness and complete the scan",
)
async def finalize_scan(
    customer_id: UUID, scan_id: UUID, ctx: TenantCtx, service: Scans
) -> DataResponse[dict[str, Any]]:
    return DataResponse[dict[str, Any]](data=await service.finalize(ctx, customer_id, scan_id))


@router.post("/{scan_id}/cancel", response_model=DataResponse[ScanResponse], summary="Cancel a running scan")
async def cancel_scan(customer_id: UUID, scan_id: UUID, ctx: TenantCtx, service: Scans) -> DataResponse[ScanResponse]:
    scan = await service.cancel(ctx, customer_id, scan_id)
    return DataResponse[ScanResponse](data=ScanResponse.model_validate(scan), message="Scan cancelled")
