"""Tracking CRUD and the enqueue side of the sync orchestration."""

import logging
import math
import uuid
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import TenantContext
from app.core.errors import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PreconditionFailed,
    ValidationFailed,
)
from app.models.customer import Customer
from app.models.tracking import (
    Destination,
    HealthStatus,
    SyncState,
    Tracking,
    TrackingStatus,
)
from app.schemas.tracking import TrackingCreate, TrackingListParams, TrackingUpdate
from app.services.job_queue import (
    ADS_SYNC_QUEUE,
    GTM_SYNC_QUEUE,
    JobHandle,
    JobQueue,
    SyncAction,
    SyncJobPayload,
)
from app.services.realtime import RealtimeChannel
from app.services.tracking_rules import default_ga4_event_name, requires_ads, status_color, status_label

logger = logging.getLogger(__name__)

# Fields whose change must be pushed to GTM/Ads
RESYNC_FIELDS = (
    "name",
    "selector",
    "url_pattern",
    "config",
    "ga4_event_name",
    "ga4_parameters",
    "ads_conversion_value",
    "destinations",
)

SORT_COLUMNS = {
    "createdAt": Tracking.created_at,
    "updatedAt": Tracking.updated_at,
    "name": Tracking.name,
    "status": Tracking.status,
    "type": Tracking.type,
}


@dataclass
class EnqueuedJobs:
    gtm: JobHandle | None = None
    ads: JobHandle | None = None

    @property
    def count(self) -> int:
        return int(self.gtm is not None) + int(self.ads is not None)


class TrackingService:
    """Creates, edits and deletes trackings and hands the remote work to the job queue."""

    def __init__(self, db: AsyncSession, job_queue: JobQueue) -> None:
        self.db = db
        self.job_queue = job_queue

    # === Lookups ===

    async def get_customer(self, ctx: TenantContext, customer_id: UUID) -> Customer:
        result = await self.db.execute(
            select(Customer).where(Customer.id == customer_id, Customer.tenant_id == ctx.tenant_id)
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            raise NotFoundError("Customer not found")
        return customer

    async def get(self, ctx: TenantContext, tracking_id: UUID) -> Tracking:
        result = await self.db.execute(
            select(Tracking).where(Tracking.id == tracking_id, Tracking.tenant_id == ctx.tenant_id)
        )
        tracking = result.scalar_one_or_none()
        if tracking is None:
            raise NotFoundError("Tracking not found")
        return tracking

    async def list_trackings(
        self, ctx: TenantContext, params: TrackingListParams
    ) -> tuple[list[Tracking], dict[str, Any]]:
        """Filtered, sorted page of trackings plus pagination metadata."""
        conditions = [Tracking.tenant_id == ctx.tenant_id]
        if params.customer_id:
            conditions.append(Tracking.customer_id == params.customer_id)
        if params.status:
            conditions.append(Tracking.status == params.status)
        if params.type:
            conditions.append(Tracking.type == params.type)
        if params.search:
            conditions.append(func.lower(Tracking.name).contains(params.search.lower()))

        total = (
            await self.db.execute(select(func.count(Tracking.id)).where(*conditions))
        ).scalar_one()

        column = SORT_COLUMNS[params.sort_by]
        order = column.asc() if params.sort_order == "asc" else column.desc()
        result = await self.db.execute(
            select(Tracking)
            .where(*conditions)
            .order_by(order, Tracking.id)
            .offset((params.page - 1) * params.limit)
            .limit(params.limit)
        )
        total_pages = math.ceil(total / params.limit) if total else 0
        pagination = {
            "page": params.page,
            "limit": params.limit,
            "total": total,
            "total_pages": total_pages,
            "has_more": params.page < total_pages,
        }
        return list(result.scalars().all()), pagination

    # === Create ===

    async def create(
        self, ctx: TenantContext, data: TrackingCreate
    ) -> tuple[Tracking, EnqueuedJobs]:
        """Persist a tracking and enqueue its sync jobs.

        The customer must belong to the tenant and have a connected Google
        account; both are checked before anything is written or enqueued.
        """
        customer = await self.get_customer(ctx, data.customer_id)
        if not customer.google_account_id:
            raise PreconditionFailed(
                "Google account not connected for this customer. Connect Google before creating trackings."
            )

        tracking = Tracking(
            tenant_id=ctx.tenant_id,
            customer_id=customer.id,
            created_by=ctx.user_id,
            name=data.name,
            description=data.description,
            type=data.type,
            destinations=[d.value for d in data.destinations],
            selector=data.selector,
            url_pattern=data.url_pattern,
            config=data.config,
            ga4_event_name=data.ga4_event_name or default_ga4_event_name(data.type),
            ga4_parameters=data.ga4_parameters,
            ads_conversion_value=data.ads_conversion_value,
            status=TrackingStatus.PENDING,
            health_status=HealthStatus.UNCHECKED,
        )
        self.db.add(tracking)
        await self.db.flush()

        self._begin_round(tracking)
        tracking.status = TrackingStatus.CREATING
        await self.db.commit()
        jobs = await self._dispatch(ctx, tracking, "create")

        logger.info(
            "Created tracking %s (%s) for customer %s with %d sync job(s)",
            tracking.id,
            tracking.type.value,
            customer.id,
            jobs.count,
        )
        return tracking, jobs

    def _begin_round(self, tracking: Tracking) -> None:
        """Reset per-destination states; Ads is required iff requires_ads."""
        tracking.gtm_sync_state = SyncState.PENDING
        tracking.ads_sync_state = (
            SyncState.PENDING if requires_ads(tracking.destinations) else SyncState.NOT_REQUIRED
        )
        tracking.gtm_job_id = None
        tracking.ads_job_id = None

    async def _dispatch(
        self,
        ctx: TenantContext,
        tracking: Tracking,
        action: SyncAction,
        batch_id: str | None = None,
    ) -> EnqueuedJobs:
        """Enqueue GTM always and Ads iff required, after the round is committed.

        A broker failure fails the round instead of leaving the tracking stuck
        in CREATING/SYNCING.
        """
        payload: SyncJobPayload = {
            "tracking_id": str(tracking.id),
            "customer_id": str(tracking.customer_id),
            "tenant_id": str(ctx.tenant_id),
            "user_id": ctx.user_id,
            "action": action,
        }
        if batch_id:
            payload["batch_id"] = batch_id

        jobs = EnqueuedJobs()
        try:
            jobs.gtm = self.job_queue.add_gtm_sync_job(payload)
            if tracking.ads_sync_state == SyncState.PENDING:
                jobs.ads = self.job_queue.add_ads_sync_job(payload)
        except Exception as e:
            logger.error("Failed to enqueue sync for tracking %s: %s", tracking.id, e)
            tracking.status = TrackingStatus.FAILED
            tracking.last_error = f"Could not queue sync: {e}"[:500]
            await self.db.commit()
            raise ExternalServiceError(f"Could not queue sync: {e}") from e

        tracking.gtm_job_id = jobs.gtm.id
        tracking.ads_job_id = jobs.ads.id if jobs.ads else None
        await self.db.commit()
        return jobs

    # === Update ===

    async def update(
        self, ctx: TenantContext, tracking_id: UUID, data: TrackingUpdate
    ) -> tuple[Tracking, EnqueuedJobs, bool]:
        """Apply user edits; re-sync an ACTIVE tracking whose remote shape changed.

        Raises:
            ConflictError: If a sync is in flight. Nothing is modified.
        """
        tracking = await self.get(ctx, tracking_id)
        if tracking.is_in_flight:
            raise ConflictError(
                f"Tracking is currently {tracking.status.value.lower()}; try again when the sync finishes"
            )

        changes = data.model_dump(exclude_unset=True)
        requested_status = changes.pop("status", None)
        previous_status = tracking.status
        if (
            requested_status is not None
            and requested_status != previous_status
            and previous_status not in (TrackingStatus.ACTIVE, TrackingStatus.PAUSED)
        ):
            raise ValidationFailed("Only active trackings can be paused or resumed")
        if changes.get("destinations") is not None:
            changes["destinations"] = [Destination(d).value for d in changes["destinations"]]

        changed_fields: set[str] = set()
        for field, value in changes.items():
            if value is None and field in ("name", "destinations", "config", "ga4_parameters"):
                continue
            if getattr(tracking, field) != value:
                setattr(tracking, field, value)
                changed_fields.add(field)

        if requested_status is not None and requested_status != previous_status:
            tracking.status = requested_status

        needs_resync = (
            previous_status == TrackingStatus.ACTIVE
            and bool(tracking.gtm_trigger_id)
            and any(field in changed_fields for field in RESYNC_FIELDS)
        )
        jobs = EnqueuedJobs()
        if needs_resync:
            self._begin_round(tracking)
            tracking.status = TrackingStatus.SYNCING
        await self.db.commit()
        if needs_resync:
            jobs = await self._dispatch(ctx, tracking, "update")
        logger.info(
            "Updated tracking %s fields=%s resync=%s", tracking.id, sorted(changed_fields), needs_resync
        )
        return tracking, jobs, needs_resync

    # === Delete ===

    async def delete(self, ctx: TenantContext, tracking_id: UUID) -> EnqueuedJobs:
        """Delete locally now; remote cleanup runs as best-effort jobs.

        Raises:
            ConflictError: If a sync is in flight. Nothing is deleted.
        """
        tracking = await self.get(ctx, tracking_id)
        if tracking.is_in_flight:
            raise ConflictError(
                f"Tracking is currently {tracking.status.value.lower()}; it cannot be deleted until the sync finishes"
            )

        customer = await self.db.get(Customer, tracking.customer_id)
        remote = {
            "gtm_account_id": customer.gtm_account_id if customer else None,
            "gtm_container_id": tracking.gtm_container_id,
            "gtm_workspace_id": tracking.gtm_workspace_id,
            "gtm_trigger_id": tracking.gtm_trigger_id,
            "gtm_tag_id_ga4": tracking.gtm_tag_id_ga4,
            "gtm_tag_id_ads": tracking.gtm_tag_id_ads,
            "ads_account_id": tracking.ads_account_id,
            "conversion_action_id": tracking.conversion_action_id,
        }
        payload: SyncJobPayload = {
            "tracking_id": str(tracking.id),
            "customer_id": str(tracking.customer_id),
            "tenant_id": str(ctx.tenant_id),
            "user_id": ctx.user_id,
            "action": "delete",
            "remote": remote,
        }

        jobs = EnqueuedJobs()
        if tracking.gtm_trigger_id or tracking.gtm_tag_id_ga4 or tracking.gtm_tag_id_ads:
            jobs.gtm = self.job_queue.add_gtm_sync_job(payload)
        if tracking.conversion_action_id or requires_ads(tracking.destinations):
            jobs.ads = self.job_queue.add_ads_sync_job(payload)

        await self.db.delete(tracking)
        await self.db.commit()
        logger.info("Deleted tracking %s with %d cleanup job(s)", tracking_id, jobs.count)
        return jobs

    # === Status ===

    def status_summary(self, tracking: Tracking, jobs: dict[str, Any] | None = None) -> dict[str, Any]:
        """Sync identifiers, job states and health in one view."""
        return {
            "tracking": tracking,
            "gtm": {
                "trigger_id": tracking.gtm_trigger_id,
                "tag_id_ga4": tracking.gtm_tag_id_ga4,
                "tag_id_ads": tracking.gtm_tag_id_ads,
                "container_id": tracking.gtm_container_id,
                "workspace_id": tracking.gtm_workspace_id,
                "synced": bool(
                    tracking.gtm_trigger_id and (tracking.gtm_tag_id_ga4 or tracking.gtm_tag_id_ads)
                ),
            },
            "google_ads": {
                "conversion_action_id": tracking.conversion_action_id,
                "conversion_label": tracking.ads_conversion_label,
                "synced": bool(tracking.conversion_action_id),
            },
            "jobs": jobs,
            "health": {
                "is_healthy": tracking.status == TrackingStatus.ACTIVE
                and tracking.health_status in (HealthStatus.HEALTHY, HealthStatus.UNCHECKED),
                "needs_attention": tracking.status == TrackingStatus.FAILED
                or tracking.health_status
                not in (HealthStatus.HEALTHY, HealthStatus.UNCHECKED),
                "status_label": status_label(tracking.status),
                "status_color": status_color(tracking.status),
                "health_status": tracking.health_status,
                "last_checked_at": tracking.last_health_check_at,
            },
        }

    def job_states(self, tracking: Tracking) -> dict[str, Any]:
        states: dict[str, Any] = {}
        if tracking.gtm_job_id:
            states["gtm"] = self.job_queue.get_job_status(GTM_SYNC_QUEUE, tracking.gtm_job_id)
        if tracking.ads_job_id:
            states["ads"] = self.job_queue.get_job_status(ADS_SYNC_QUEUE, tracking.ads_job_id)
        return states

    # === Batch sync ===

    async def batch_sync(
        self,
        ctx: TenantContext,
        tracking_ids: list[UUID],
        realtime: RealtimeChannel | None = None,
    ) -> dict[str, Any]:
        """Re-run sync for several trackings; progress is reported per batch."""
        batch_id = uuid.uuid4().hex
        result = await self.db.execute(
            select(Tracking).where(
                Tracking.tenant_id == ctx.tenant_id, Tracking.id.in_(tracking_ids)
            )
        )
        trackings = {t.id: t for t in result.scalars().all()}

        queued: list[Tracking] = []
        skipped: list[dict[str, str]] = []
        for tracking_id in dict.fromkeys(tracking_ids):
            tracking = trackings.get(tracking_id)
            if tracking is None:
                skipped.append({"trackingId": str(tracking_id), "reason": "not found"})
                continue
            if tracking.is_in_flight:
                skipped.append({"trackingId": str(tracking_id), "reason": "sync in progress"})
                continue
            if tracking.status == TrackingStatus.PAUSED:
                skipped.append({"trackingId": str(tracking_id), "reason": "paused"})
                continue
            self._begin_round(tracking)
            tracking.status = (
                TrackingStatus.SYNCING if tracking.gtm_trigger_id else TrackingStatus.CREATING
            )
            queued.append(tracking)
        await self.db.commit()

        # Counters must exist before the first job can finish
        total_jobs = sum(
            1 + int(t.ads_sync_state == SyncState.PENDING) for t in queued
        )
        if realtime is not None and total_jobs:
            await realtime.start_batch(batch_id, total_jobs, ctx.tenant_id)

        for tracking in queued:
            action: SyncAction = "update" if tracking.status == TrackingStatus.SYNCING else "create"
            await self._dispatch(ctx, tracking, action, batch_id=batch_id)

        logger.info("Batch %s queued %d tracking(s), skipped %d", batch_id, len(queued), len(skipped))
        return {
            "batch_id": batch_id,
            "queued": [t.id for t in queued],
            "skipped": skipped,
            "total_jobs": total_jobs,
        }
