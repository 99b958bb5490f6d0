"""Server-sent event streams for dashboard progress updates."""

import json
from collections.abc import AsyncIterator
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy import select

from app.core.deps import DBSession, TenantCtx, get_realtime
from app.core.errors import NotFoundError
from app.models.customer import Customer
from app.models.site_scan import SiteScan
from app.services.realtime import RealtimeChannel, batch_channel, customer_channel, scan_channel

router = APIRouter()

SSE_HEADERS = {"Cache-Control": "no-store", "Connection": "keep-alive", "X-Accel-Buffering": "no"}

Realtime = Annotated[RealtimeChannel, Depends(get_realtime)]


async def _sse(request: Request, realtime: RealtimeChannel, key: str) -> AsyncIterator[str]:
    yield ": connected\n\n"
    async for event in realtime.subscribe(key):
        if await request.is_disconnected():
            break
        if event.get("type") == "ping":
            yield ": ping\n\n"
            continue
        yield f"event: {event['type']}\ndata: {json.dumps(event, default=str)}\n\n"


def _stream(request: Request, realtime: RealtimeChannel, key: str) -> StreamingResponse:
    return StreamingResponse(
        _sse(request, realtime, key), media_type="text/event-stream", headers=SSE_HEADERS
    )


@router.get("/customers/{customer_id}/events", summary="Sync and health events for a customer")
async def customer_events(
    request: Request, customer_id: UUID, ctx: TenantCtx, db: DBSession, realtime: Realtime
) -> StreamingResponse:
    result = await db.execute(
        select(Customer.id).where(Customer.id == customer_id, Customer.tenant_id == ctx.tenant_id)
    )
    if result.scalar_one_or_none() is None:
        raise NotFoundError("Customer not found")
    return _stream(request, realtime, customer_channel(customer_id))


@router.get("/scans/{scan_id}/events", summary="Progress events for a site scan")
async def scan_events(
    request: Request, scan_id: UUID, ctx: TenantCtx, db: DBSession, realtime: Realtime
) -> StreamingResponse:
    result = await db.execute(
        select(SiteScan.id).where(SiteScan.id == scan_id, SiteScan.tenant_id == ctx.tenant_id)
    )
    if result.scalar_one_or_none() is None:
        raise NotFoundError("Scan not found")
    return _stream(request, realtime, scan_channel(scan_id))


@router.get("/batches/{batch_id}/events", summary="Progress events for a batch sync")
async def batch_events(request: Request, batch_id: str, ctx: TenantCtx, realtime: Realtime) -> StreamingResponse:
    if await realtime.batch_owner(batch_id) != str(ctx.tenant_id):
        raise NotFoundError("Batch not found")
    return _stream(request, realtime, batch_channel(batch_id))
