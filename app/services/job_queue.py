"""Job queue facade over Celery for GTM and Google Ads sync jobs."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Literal, NotRequired, TypedDict

from celery import Celery
from celery.result import AsyncResult

logger = logging.getLogger(__name__)

GTM_SYNC_QUEUE = "gtm-sync"
ADS_SYNC_QUEUE = "google-ads-sync"
GTM_SYNC_TASK = "tasks.sync.gtm_sync"
ADS_SYNC_TASK = "tasks.sync.ads_sync"

# Result-backend key holding the tenant that enqueued a job; expires with the job result
OWNER_KEY_PREFIX = "job-owner:"

SyncAction = Literal["create", "update", "delete"]


class SyncJobPayload(TypedDict):
    """Arguments of a GTM/Ads sync job.

    ``remote`` carries the external identifiers for delete jobs, because the
    tracking row is gone by the time the job runs.
    """

    tracking_id: str
    customer_id: str
    tenant_id: str
    user_id: str | None
    action: SyncAction
    remote: NotRequired[dict[str, Any]]
    batch_id: NotRequired[str]


@dataclass(frozen=True)
class JobHandle:
    id: str
    queue: str


# Celery state -> queue-neutral state reported to the dashboard
_STATE_NAMES = {
    "PENDING": "waiting",
    "RECEIVED": "waiting",
    "STARTED": "active",
    "RETRY": "delayed",
    "SUCCESS": "completed",
    "FAILURE": "failed",
    "REVOKED": "failed",
}


class JobQueue:
    """Enqueues sync jobs; constructed once per process and injected."""

    def __init__(self, celery: Celery) -> None:
        self.celery = celery

    def _enqueue(self, task_name: str, queue: str, payload: SyncJobPayload) -> JobHandle:
        job_id = str(uuid.uuid4())
        self.celery.backend.set(f"{OWNER_KEY_PREFIX}{job_id}", payload["tenant_id"])
        result = self.celery.send_task(task_name, args=[dict(payload)], queue=queue, task_id=job_id)
        logger.info(
            "Enqueued %s job %s for tracking %s (%s)",
            queue,
            result.id,
            payload["tracking_id"],
            payload["action"],
        )
        return JobHandle(id=str(result.id), queue=queue)

    def add_gtm_sync_job(self, payload: SyncJobPayload) -> JobHandle:
        return self._enqueue(GTM_SYNC_TASK, GTM_SYNC_QUEUE, payload)

    def add_ads_sync_job(self, payload: SyncJobPayload) -> JobHandle:
        return self._enqueue(ADS_SYNC_TASK, ADS_SYNC_QUEUE, payload)

    def job_owner(self, job_id: str) -> str | None:
        """Tenant id that enqueued ``job_id``, or None once the record has expired."""
        owner = self.celery.backend.get(f"{OWNER_KEY_PREFIX}{job_id}")
        if owner is None:
            return None
        return owner.decode() if isinstance(owner, bytes) else str(owner)

    def get_job_status(self, queue_name: str, job_id: str) -> dict[str, Any]:
        """Poll a job's state from the result backend."""
        result = AsyncResult(job_id, app=self.celery)
        state = _STATE_NAMES.get(result.state, result.state.lower())
        status: dict[str, Any] = {"id": job_id, "queue": queue_name, "state": state}
        if result.successful():
            status["result"] = result.result
        elif result.failed():
            status["error"] = str(result.result)
        return status
