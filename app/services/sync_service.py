"""GTM and Google Ads sync job handlers.

Each tracking gets up to two independent jobs per sync round. They can finish
in either order; whichever finishes last derives the tracking's final status
from both per-destination outcomes (see ``combine_status``). Identifiers are
persisted as soon as each remote object exists, so a later failure never
rolls back partial success.
"""

import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import DomainError
from app.integrations.google.ads import parse_send_to
from app.integrations.google.base import GoogleAPIError
from app.integrations.google.gtm import GTMClient, WorkspaceRef
from app.models.customer import Customer
from app.models.tenant import Tenant
from app.models.tracking import IN_FLIGHT_STATUSES, SyncState, Tracking, TrackingStatus
from app.services.job_queue import SyncJobPayload
from app.services.realtime import RealtimeChannel, RealtimeEvent, customer_channel
from app.services.token_service import GoogleClientFactory
from app.services.tracking_rules import (
    ads_conversion_category,
    ads_tag_body,
    default_ga4_event_name,
    ga4_tag_body,
    requires_ads,
    requires_ga4,
    trigger_body,
)

logger = logging.getLogger(__name__)

SyncTarget = Literal["gtm", "ads"]

# === Error classification ===

_QUOTA_PATTERNS = re.compile(
    r"429|RESOURCE_EXHAUSTED|rateLimitExceeded|quotaExceeded|userRateLimitExceeded|Quota exceeded",
    re.IGNORECASE,
)
_DAILY_QUOTA_PATTERNS = re.compile(r"per day|daily|dailyLimitExceeded", re.IGNORECASE)
_HUNDRED_SECONDS_PATTERNS = re.compile(r"100 seconds|per 100s", re.IGNORECASE)
_RETRYABLE_PATTERNS = re.compile(
    r"\b50[0234]\b|UNAVAILABLE|DEADLINE_EXCEEDED|INTERNAL|CONCURRENT_MODIFICATION|"
    r"ECONNRESET|ETIMEDOUT|timed? ?out",
    re.IGNORECASE,
)
RETRY_DELAYS = (15, 30, 60, 120)
MAX_QUOTA_COOLDOWN = 300
DAILY_QUOTA_COOLDOWN = 3600


class SyncConfigError(Exception):
    """The tracking or customer lacks something the sync needs. Never retried."""


class TransientSyncError(Exception):
    """Raised to ask the worker to retry the job after ``delay_seconds``."""

    def __init__(self, message: str, delay_seconds: int, *, quota: bool) -> None:
        super().__init__(message)
        self.delay_seconds = delay_seconds
        self.quota = quota


@dataclass(frozen=True)
class ErrorClass:
    kind: Literal["quota", "retryable", "permanent"]
    delay_seconds: int = 0


def classify_error(error: Exception, attempt: int) -> ErrorClass:
    """Decide whether a sync failure is worth retrying, and when.

    Quota errors wait out the quota window (65 s per-minute, 105 s
    per-100-seconds, growing per attempt up to 300 s; an hour for daily
    quotas). Server-side and network errors back off 15/30/60/120 s.
    """
    if isinstance(error, SyncConfigError | DomainError):
        return ErrorClass("permanent")

    text = str(error)
    if isinstance(error, GoogleAPIError):
        text = f"{error.status_code} {error.reason or ''} {error.message}"

    if (isinstance(error, GoogleAPIError) and error.status_code == 429) or _QUOTA_PATTERNS.search(
        text
    ):
        if _DAILY_QUOTA_PATTERNS.search(text):
            return ErrorClass("quota", DAILY_QUOTA_COOLDOWN)
        base = 105 if _HUNDRED_SECONDS_PATTERNS.search(text) else 65
        return ErrorClass("quota", min(base * max(attempt, 1), MAX_QUOTA_COOLDOWN))

    if isinstance(error, httpx.TransportError) or _RETRYABLE_PATTERNS.search(text):
        index = min(max(attempt, 1) - 1, len(RETRY_DELAYS) - 1)
        return ErrorClass("retryable", RETRY_DELAYS[index])

    return ErrorClass("permanent")


def combine_status(tracking: Tracking) -> TrackingStatus:
    """Final status from the per-destination outcomes of the current round.

    Any required destination FAILED -> FAILED; every required destination
    SUCCEEDED or SKIPPED -> ACTIVE; otherwise the round is still running
    and the status is left as is.
    """
    required = [
        state
        for state in (tracking.gtm_sync_state, tracking.ads_sync_state)
        if state != SyncState.NOT_REQUIRED
    ]
    if any(state == SyncState.FAILED for state in required):
        return TrackingStatus.FAILED
    if required and all(state in (SyncState.SUCCEEDED, SyncState.SKIPPED) for state in required):
        return TrackingStatus.ACTIVE
    return tracking.status


class TrackingSyncService:
    """Executes sync jobs against Google on behalf of the Celery workers."""

    def __init__(
        self,
        db: AsyncSession,
        clients: GoogleClientFactory,
        realtime: RealtimeChannel | None = None,
    ) -> None:
        self.db = db
        self.clients = clients
        self.realtime = realtime

    # === Entry points ===

    async def run_gtm_job(
        self, payload: SyncJobPayload, attempt: int = 1, max_attempts: int = 3
    ) -> dict[str, Any]:
        if payload["action"] == "delete":
            return await self._delete_gtm(payload)
        return await self._run_upsert("gtm", payload, attempt, max_attempts)

    async def run_ads_job(
        self, payload: SyncJobPayload, attempt: int = 1, max_attempts: int = 3
    ) -> dict[str, Any]:
        if payload["action"] == "delete":
            return await self._delete_ads(payload)
        return await self._run_upsert("ads", payload, attempt, max_attempts)

    # === Create / update ===

    async def _load_tracking(self, tracking_id: UUID) -> Tracking | None:
        result = await self.db.execute(
            select(Tracking).where(Tracking.id == tracking_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def _run_upsert(
        self,
        destination: SyncTarget,
        payload: SyncJobPayload,
        attempt: int,
        max_attempts: int,
    ) -> dict[str, Any]:
        tracking = await self._load_tracking(UUID(payload["tracking_id"]))
        if tracking is None:
            logger.info("Tracking %s no longer exists, skipping %s job", payload["tracking_id"], destination)
            return {"status": "skipped", "reason": "tracking deleted"}

        customer = await self.db.get(Customer, tracking.customer_id)
        if customer is None:
            logger.warning("Customer %s missing for tracking %s", tracking.customer_id, tracking.id)
            return {"status": "skipped", "reason": "customer deleted"}

        batch_id = payload.get("batch_id")
        if batch_id and self.realtime:
            await self.realtime.batch_resumed_if_paused(batch_id)
        await self._publish(customer.id, RealtimeEvent.JOB_PROCESSING, tracking, destination, payload)

        try:
            if destination == "gtm":
                outcome = await self._sync_gtm(tracking, customer, payload.get("user_id"))
            else:
                outcome = await self._sync_ads(tracking, customer, payload.get("user_id"))
        except Exception as e:  # noqa: BLE001
            return await self._record_failure(
                tracking, customer, destination, payload, e, attempt, max_attempts
            )

        self._set_state(tracking, destination, outcome)
        self._apply_combined_status(tracking)
        await self.db.commit()

        logger.info(
            "%s sync %s for tracking %s -> %s",
            destination.upper(),
            outcome.value,
            tracking.id,
            tracking.status.value,
        )
        await self._publish(customer.id, RealtimeEvent.JOB_COMPLETED, tracking, destination, payload)
        if batch_id and self.realtime:
            await self.realtime.batch_job_finished(batch_id, succeeded=True)
        return {"status": outcome.value, "trackingStatus": tracking.status.value}

    def _set_state(self, tracking: Tracking, destination: SyncTarget, state: SyncState) -> None:
        if destination == "gtm":
            tracking.gtm_sync_state = state
        else:
            tracking.ads_sync_state = state

    def _apply_combined_status(self, tracking: Tracking) -> None:
        if tracking.status not in IN_FLIGHT_STATUSES:
            return
        status = combine_status(tracking)
        if status == TrackingStatus.ACTIVE and tracking.status != TrackingStatus.ACTIVE:
            tracking.last_sync_at = datetime.now(UTC)
            tracking.last_error = None
        tracking.status = status

    async def _record_failure(
        self,
        tracking: Tracking,
        customer: Customer,
        destination: SyncTarget,
        payload: SyncJobPayload,
        error: Exception,
        attempt: int,
        max_attempts: int,
    ) -> dict[str, Any]:
        """Persist a failed attempt; raise TransientSyncError when a retry is due."""
        classification = classify_error(error, attempt)
        message = f"{destination.upper()}: {error}"[:500]
        tracking.last_error = message
        tracking.sync_attempts += 1

        batch_id = payload.get("batch_id")
        if classification.kind != "permanent" and attempt < max_attempts:
            await self.db.commit()
            logger.warning(
                "%s sync attempt %d/%d for tracking %s failed (%s), retrying in %ss: %s",
                destination.upper(),
                attempt,
                max_attempts,
                tracking.id,
                classification.kind,
                classification.delay_seconds,
                error,
            )
            if classification.kind == "quota" and batch_id and self.realtime:
                await self.realtime.batch_paused(batch_id, classification.delay_seconds, message)
            raise TransientSyncError(
                message, classification.delay_seconds, quota=classification.kind == "quota"
            ) from error

        self._set_state(tracking, destination, SyncState.FAILED)
        self._apply_combined_status(tracking)
        await self.db.commit()

        logger.error("%s sync failed for tracking %s: %s", destination.upper(), tracking.id, error)
        await self._publish(
            customer.id, RealtimeEvent.JOB_FAILED, tracking, destination, payload, error=message
        )
        if batch_id and self.realtime:
            await self.realtime.batch_job_finished(batch_id, succeeded=False)
        return {"status": SyncState.FAILED.value, "error": message}

    # === GTM ===

    async def resolve_workspace(self, gtm: GTMClient, customer: Customer) -> WorkspaceRef:
        """Find (or create) the customer's GTM container and OneClickTag workspace.

        Discovered ids are written back to the customer and tenant so later
        jobs skip discovery.
        """
        tenant = await self.db.get(Tenant, customer.tenant_id)
        account_id = customer.gtm_account_id or (tenant.gtm_account_id if tenant else None)
        if not account_id:
            accounts = await gtm.list_accounts()
            if not accounts:
                raise SyncConfigError("No Google Tag Manager account found for this Google login")
            account_id = str(accounts[0]["accountId"])
            if tenant is not None and not tenant.gtm_account_id:
                tenant.gtm_account_id = account_id
        customer.gtm_account_id = account_id

        if not customer.gtm_container_id:
            container = await gtm.get_or_create_container(account_id, f"OneClickTag - {customer.name}")
            customer.gtm_container_id = str(container["containerId"])
            customer.gtm_container_name = container.get("name")
            customer.gtm_container_public_id = container.get("publicId")

        if customer.gtm_workspace_id:
            ref = WorkspaceRef(account_id, customer.gtm_container_id, customer.gtm_workspace_id)
        else:
            ref = await gtm.get_or_create_workspace(account_id, customer.gtm_container_id)
            customer.gtm_workspace_id = ref.workspace_id

        await self.db.flush()
        return ref

    async def _sync_gtm(
        self, tracking: Tracking, customer: Customer, user_id: str | None
    ) -> SyncState:
        gtm = await self.clients.gtm(tracking.tenant_id, user_id)
        ref = await self.resolve_workspace(gtm, customer)
        tracking.gtm_container_id = ref.container_id
        tracking.gtm_workspace_id = ref.workspace_id

        event_name = tracking.ga4_event_name or default_ga4_event_name(tracking.type)
        trigger = trigger_body(
            tracking.name, tracking.type, event_name, tracking.selector, tracking.url_pattern
        )
        if tracking.gtm_trigger_id:
            await gtm.update_trigger(ref, tracking.gtm_trigger_id, trigger)
        else:
            created = await gtm.get_or_create_trigger_by_name(ref, trigger)
            tracking.gtm_trigger_id = str(created["triggerId"])
        await self.db.flush()

        if requires_ga4(tracking.destinations):
            ga4_property = customer.active_ga4_property
            if ga4_property is None or not ga4_property.measurement_id:
                raise SyncConfigError(
                    "GA4 Measurement ID is required. Connect a GA4 property for this customer."
                )
            tag = ga4_tag_body(
                tracking.name,
                event_name,
                ga4_property.measurement_id,
                tracking.gtm_trigger_id,
                tracking.ga4_parameters,
            )
            if tracking.gtm_tag_id_ga4:
                await gtm.update_tag(ref, tracking.gtm_tag_id_ga4, tag)
            else:
                created = await gtm.get_or_create_tag_by_name(ref, tag)
                tracking.gtm_tag_id_ga4 = str(created["tagId"])
            await self.db.flush()
        elif tracking.gtm_tag_id_ga4:
            await self._delete_stale_tag(gtm, ref, tracking.gtm_tag_id_ga4)
            tracking.gtm_tag_id_ga4 = None

        if requires_ads(tracking.destinations):
            if tracking.ads_conversion_id and tracking.ads_conversion_label:
                await self._upsert_ads_tag(gtm, ref, tracking)
        elif tracking.gtm_tag_id_ads:
            await self._delete_stale_tag(gtm, ref, tracking.gtm_tag_id_ads)
            tracking.gtm_tag_id_ads = None

        return SyncState.SUCCEEDED

    async def _upsert_ads_tag(self, gtm: GTMClient, ref: WorkspaceRef, tracking: Tracking) -> None:
        """Create or update the awct tag once both the trigger and the label exist."""
        if not (tracking.gtm_trigger_id and tracking.ads_conversion_id and tracking.ads_conversion_label):
            return
        tag = ads_tag_body(
            tracking.name,
            tracking.ads_conversion_id,
            tracking.ads_conversion_label,
            tracking.gtm_trigger_id,
            tracking.ads_conversion_value,
        )
        if tracking.gtm_tag_id_ads:
            await gtm.update_tag(ref, tracking.gtm_tag_id_ads, tag)
        else:
            created = await gtm.get_or_create_tag_by_name(ref, tag)
            tracking.gtm_tag_id_ads = str(created["tagId"])
        await self.db.flush()

    async def _delete_stale_tag(self, gtm: GTMClient, ref: WorkspaceRef, tag_id: str) -> None:
        try:
            await gtm.delete_tag(ref, tag_id)
        except GoogleAPIError as e:
            if not e.not_found:
                raise

    # === Google Ads ===

    async def _sync_ads(
        self, tracking: Tracking, customer: Customer, user_id: str | None
    ) -> SyncState:
        accounts = customer.google_ads_accounts
        if not accounts:
            logger.info("Customer %s has no Google Ads account, skipping Ads sync", customer.id)
            return SyncState.SKIPPED
        account = accounts[0]

        ads = await self.clients.ads(tracking.tenant_id, user_id)
        conversion_name = f"OneClickTag - {tracking.name}"

        if tracking.conversion_action_id and tracking.ads_account_id:
            await ads.update_conversion_action(
                tracking.ads_account_id,
                tracking.conversion_action_id,
                conversion_name,
                tracking.ads_conversion_value,
            )
            if not tracking.ads_conversion_label:
                details = await ads.get_conversion_action(
                    tracking.ads_account_id, tracking.conversion_action_id
                )
                tracking.ads_conversion_id, tracking.ads_conversion_label = parse_send_to(
                    (details or {}).get("tagSnippets", [])
                )
        else:
            created = await ads.create_conversion_action(
                account.account_id,
                conversion_name,
                ads_conversion_category(tracking.type),
                tracking.ads_conversion_value,
            )
            tracking.ads_account_id = account.account_id
            tracking.conversion_action_id = created["conversion_action_id"]
            tracking.ads_conversion_id = created["conversion_id"]
            tracking.ads_conversion_label = created["conversion_label"]
        await self.db.flush()

        if tracking.gtm_trigger_id and customer.gtm_account_id and tracking.gtm_container_id and tracking.gtm_workspace_id:
            gtm = await self.clients.gtm(tracking.tenant_id, user_id)
            ref = WorkspaceRef(customer.gtm_account_id, tracking.gtm_container_id, tracking.gtm_workspace_id)
            await self._upsert_ads_tag(gtm, ref, tracking)

        return SyncState.SUCCEEDED

    # === Delete (best-effort) ===

    async def _delete_gtm(self, payload: SyncJobPayload) -> dict[str, Any]:
        remote = payload.get("remote") or {}
        account_id = remote.get("gtm_account_id")
        container_id = remote.get("gtm_container_id")
        workspace_id = remote.get("gtm_workspace_id")
        if not (account_id and container_id and workspace_id):
            logger.info("No GTM workspace recorded for deleted tracking %s", payload["tracking_id"])
            return {"status": "skipped", "deleted": []}

        ref = WorkspaceRef(account_id, container_id, workspace_id)
        deleted: list[str] = []
        try:
            gtm = await self.clients.gtm(UUID(payload["tenant_id"]), payload.get("user_id"))
        except DomainError as e:
            logger.warning("GTM cleanup for tracking %s skipped: %s", payload["tracking_id"], e)
            return {"status": "skipped", "deleted": []}

        # Tags first: GTM refuses to delete a trigger that tags still reference
        for key in ("gtm_tag_id_ga4", "gtm_tag_id_ads"):
            tag_id = remote.get(key)
            if tag_id and await self._best_effort(gtm.delete_tag(ref, tag_id), f"tag {tag_id}"):
                deleted.append(f"tag:{tag_id}")
        trigger_id = remote.get("gtm_trigger_id")
        if trigger_id and await self._best_effort(
            gtm.delete_trigger(ref, trigger_id), f"trigger {trigger_id}"
        ):
            deleted.append(f"trigger:{trigger_id}")

        await self._publish_delete(payload, "gtm", deleted)
        return {"status": "completed", "deleted": deleted}

    async def _delete_ads(self, payload: SyncJobPayload) -> dict[str, Any]:
        remote = payload.get("remote") or {}
        account_id = remote.get("ads_account_id")
        action_id = remote.get("conversion_action_id")
        if not (account_id and action_id):
            logger.info("No conversion action recorded for deleted tracking %s", payload["tracking_id"])
            return {"status": "skipped", "deleted": []}

        try:
            ads = await self.clients.ads(UUID(payload["tenant_id"]), payload.get("user_id"))
        except DomainError as e:
            logger.warning("Ads cleanup for tracking %s skipped: %s", payload["tracking_id"], e)
            return {"status": "skipped", "deleted": []}

        deleted: list[str] = []
        if await self._best_effort(
            ads.remove_conversion_action(account_id, action_id), f"conversion action {action_id}"
        ):
            deleted.append(f"conversion_action:{action_id}")
        await self._publish_delete(payload, "ads", deleted)
        return {"status": "completed", "deleted": deleted}

    async def _best_effort(self, call: Any, what: str) -> bool:
        try:
            await call
        except (GoogleAPIError, httpx.HTTPError) as e:
            logger.warning("Remote cleanup of %s failed: %s", what, e)
            return False
        return True

    # === Realtime ===

    async def _publish(
        self,
        customer_id: UUID,
        event: RealtimeEvent,
        tracking: Tracking,
        destination: SyncTarget,
        payload: SyncJobPayload,
        error: str | None = None,
    ) -> None:
        if self.realtime is None:
            return
        data: dict[str, Any] = {
            "trackingId": str(tracking.id),
            "trackingName": tracking.name,
            "queue": destination,
            "action": payload["action"],
            "status": tracking.status.value,
        }
        if payload.get("batch_id"):
            data["batchId"] = payload.get("batch_id")
        if error:
            data["error"] = error
        await self.realtime.publish(customer_channel(customer_id), event, data)

    async def _publish_delete(self, payload: SyncJobPayload, destination: SyncTarget, deleted: list[str]) -> None:
        if self.realtime is None:
            return
        await self.realtime.publish(
            customer_channel(payload["customer_id"]),
            RealtimeEvent.JOB_COMPLETED,
            {
                "trackingId": payload["tracking_id"],
                "queue": destination,
                "action": "delete",
                "deleted": deleted,
            },
        )
