"""Sync job status polling."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from app.core.deps import TenantCtx, get_job_queue
from app.core.errors import NotFoundError
from app.schemas.common import DataResponse
from app.services.job_queue import ADS_SYNC_QUEUE, GTM_SYNC_QUEUE, JobQueue

router = APIRouter()


@router.get("/{queue_name}/{job_id}", response_model=DataResponse[dict[str, Any]], summary="Poll a sync job")
async def job_status(
    queue_name: str,
    job_id: str,
    ctx: TenantCtx,
    job_queue: Annotated[JobQueue, Depends(get_job_queue)],
) -> DataResponse[dict[str, Any]]:
    if queue_name not in (GTM_SYNC_QUEUE, ADS_SYNC_QUEUE):
        raise NotFoundError(f"Unknown queue: {queue_name}")
    # Jobs of other tenants are indistinguishable from unknown ones
    if job_queue.job_owner(job_id) != str(ctx.tenant_id):
        raise NotFoundError("Job not found")
    return DataResponse[dict[str, Any]](data=job_queue.get_job_status(queue_name, job_id))
