"""On-demand reconciliation of a tracking's stored ids against GTM and Ads."""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import TenantContext
from app.core.errors import ExternalServiceError, NotFoundError
from app.integrations.google.base import GoogleAPIError
from app.integrations.google.gtm import WorkspaceRef, exists
from app.models.customer import Customer
from app.models.tracking import HealthStatus, SyncState, Tracking
from app.services.realtime import RealtimeChannel, RealtimeEvent, customer_channel
from app.services.token_service import GoogleClientFactory
from app.services.tracking_rules import requires_ads, requires_ga4

logger = logging.getLogger(__name__)


@dataclass
class HealthReport:
    tracking_id: UUID
    health_status: HealthStatus
    checked_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


def never_synced(tracking: Tracking) -> bool:
    return not (
        tracking.gtm_trigger_id
        or tracking.gtm_tag_id_ga4
        or tracking.gtm_tag_id_ads
        or tracking.conversion_action_id
    )


class HealthService:
    """Detects drift such as objects deleted by hand in the GTM UI."""

    def __init__(
        self,
        db: AsyncSession,
        clients: GoogleClientFactory,
        realtime: RealtimeChannel | None = None,
    ) -> None:
        self.db = db
        self.clients = clients
        self.realtime = realtime

    async def check(self, ctx: TenantContext, tracking_id: UUID) -> HealthReport:
        result = await self.db.execute(
            select(Tracking).where(Tracking.id == tracking_id, Tracking.tenant_id == ctx.tenant_id)
        )
        tracking = result.scalar_one_or_none()
        if tracking is None:
            raise NotFoundError("Tracking not found")
        customer = await self.db.get(Customer, tracking.customer_id)

        try:
            status, details = await self._classify(ctx, tracking, customer)
        except (GoogleAPIError, httpx.HTTPError) as e:
            logger.warning("Health check for tracking %s failed: %s", tracking.id, e)
            raise ExternalServiceError(f"Could not reach Google: {e}") from e

        checked_at = datetime.now(UTC)
        tracking.health_status = status
        tracking.last_health_check_at = checked_at
        await self.db.commit()

        logger.info("Health check for tracking %s -> %s", tracking.id, status.value)
        if self.realtime is not None:
            await self.realtime.publish(
                customer_channel(tracking.customer_id),
                RealtimeEvent.HEALTH_CHECKED,
                {"trackingId": str(tracking.id), "healthStatus": status.value, "details": details},
            )
        return HealthReport(tracking.id, status, checked_at, details)

    async def _classify(
        self, ctx: TenantContext, tracking: Tracking, customer: Customer | None
    ) -> tuple[HealthStatus, dict[str, Any]]:
        """First failing check wins: workspace, trigger, tags, conversion."""
        if never_synced(tracking):
            return HealthStatus.UNCHECKED, {"reason": "never synced"}

        details: dict[str, Any] = {}
        account_id = customer.gtm_account_id if customer else None
        if tracking.gtm_trigger_id or tracking.gtm_tag_id_ga4 or tracking.gtm_tag_id_ads:
            if not (account_id and tracking.gtm_container_id and tracking.gtm_workspace_id):
                return HealthStatus.WORKSPACE_GONE, {"reason": "workspace not recorded"}

            gtm = await self.clients.gtm(ctx.tenant_id, ctx.user_id)
            ref = WorkspaceRef(account_id, tracking.gtm_container_id, tracking.gtm_workspace_id)
            if not await exists(gtm.get_workspace(ref)):
                return HealthStatus.WORKSPACE_GONE, {"workspace": ref.path}
            details["workspace"] = "found"

            if not tracking.gtm_trigger_id or not await exists(
                gtm.get_trigger(ref, tracking.gtm_trigger_id)
            ):
                return HealthStatus.MISSING_TRIGGER, {**details, "triggerId": tracking.gtm_trigger_id}
            details["trigger"] = "found"

            if requires_ga4(tracking.destinations):
                if not tracking.gtm_tag_id_ga4 or not await exists(
                    gtm.get_tag(ref, tracking.gtm_tag_id_ga4)
                ):
                    return HealthStatus.MISSING_TAG, {**details, "tagIdGA4": tracking.gtm_tag_id_ga4}
                details["ga4Tag"] = "found"

            if requires_ads(tracking.destinations) and tracking.gtm_tag_id_ads:
                if not await exists(gtm.get_tag(ref, tracking.gtm_tag_id_ads)):
                    return HealthStatus.MISSING_TAG, {**details, "tagIdAds": tracking.gtm_tag_id_ads}
                details["adsTag"] = "found"

        if requires_ads(tracking.destinations) and tracking.ads_sync_state != SyncState.SKIPPED:
            if not (tracking.conversion_action_id and tracking.ads_account_id):
                return HealthStatus.MISSING_CONVERSION, {**details, "conversionActionId": None}
            ads = await self.clients.ads(ctx.tenant_id, ctx.user_id)
            action = await ads.get_conversion_action(
                tracking.ads_account_id, tracking.conversion_action_id
            )
            if action is None or action.get("status") == "REMOVED":
                return HealthStatus.MISSING_CONVERSION, {
                    **details,
                    "conversionActionId": tracking.conversion_action_id,
                    "remoteStatus": (action or {}).get("status"),
                }
            details["conversionAction"] = "found"

        return HealthStatus.HEALTHY, details
