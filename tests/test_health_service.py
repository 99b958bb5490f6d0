"""Tests for drift detection against GTM and Google Ads."""

from collections.abc import Callable
from typing import Any

import fakeredis.aioredis
import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import TenantContext
from app.core.errors import ExternalServiceError
from app.integrations.google.base import GoogleAPIError
from app.models.tracking import HealthStatus, SyncState, Tracking
from app.services.health_service import HealthService, never_synced
from app.services.realtime import CHANNEL_PREFIX, RealtimeChannel
from tests.conftest import FakeGoogleClients

GONE = GoogleAPIError(404, "Not found", "NOT_FOUND")


@pytest.fixture
def synced(customer_factory: Callable[..., Any], tracking_factory: Callable[..., Any]) -> Callable[..., Any]:
    """A GA4 + Ads tracking whose GTM and Ads objects were all created."""

    async def _create(**overrides: Any) -> Tracking:
        customer = await customer_factory(gtm_account_id="100")
        fields: dict[str, Any] = {
            "destinations": ["GA4", "GOOGLE_ADS"],
            "gtm_container_id": "200",
            "gtm_workspace_id": "3",
            "gtm_trigger_id": "11",
            "gtm_tag_id_ga4": "12",
            "gtm_tag_id_ads": "13",
            "conversion_action_id": "555",
            "ads_account_id": "111",
            "ads_sync_state": SyncState.SUCCEEDED,
        }
        fields.update(overrides)
        return await tracking_factory(customer, **fields)

    return _create


def _service(db: AsyncSession, google: FakeGoogleClients, redis: Any = None) -> HealthService:
    realtime = RealtimeChannel(redis) if redis is not None else None
    return HealthService(db, google, realtime)  # type: ignore[arg-type]


class TestNeverSynced:
    def test_no_remote_ids(self) -> None:
        assert never_synced(Tracking(destinations=["GA4"]))

    def test_trigger_only(self) -> None:
        assert not never_synced(Tracking(gtm_trigger_id="1"))


class TestHealthCheck:
    async def test_healthy(
        self,
        db_session: AsyncSession,
        google: FakeGoogleClients,
        ctx: TenantContext,
        synced: Callable[..., Any],
        fake_redis: fakeredis.aioredis.FakeRedis,
    ) -> None:
        tracking = await synced()
        google.ads_client.get_conversion_action.return_value = {"id": "555", "status": "ENABLED"}
        pubsub = fake_redis.pubsub()
        await pubsub.subscribe(f"{CHANNEL_PREFIX}:customer:{tracking.customer_id}")

        report = await _service(db_session, google, fake_redis).check(ctx, tracking.id)

        assert report.health_status == HealthStatus.HEALTHY
        assert report.details == {
            "workspace": "found",
            "trigger": "found",
            "ga4Tag": "found",
            "adsTag": "found",
            "conversionAction": "found",
        }
        assert tracking.health_status == HealthStatus.HEALTHY
        assert tracking.last_health_check_at is not None
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
        assert message is not None
        await pubsub.aclose()

    async def test_workspace_deleted(
        self, db_session: AsyncSession, google: FakeGoogleClients, ctx: TenantContext, synced: Callable[..., Any]
    ) -> None:
        tracking = await synced()
        google.gtm_client.get_workspace.side_effect = GONE

        report = await _service(db_session, google).check(ctx, tracking.id)

        assert report.health_status == HealthStatus.WORKSPACE_GONE
        google.gtm_client.get_trigger.assert_not_called()

    async def test_trigger_deleted_in_gtm_ui(
        self, db_session: AsyncSession, google: FakeGoogleClients, ctx: TenantContext, synced: Callable[..., Any]
    ) -> None:
        tracking = await synced()
        google.gtm_client.get_trigger.side_effect = GONE

        report = await _service(db_session, google).check(ctx, tracking.id)

        assert report.health_status == HealthStatus.MISSING_TRIGGER
        assert report.details["triggerId"] == "11"

    async def test_ga4_tag_missing(
        self, db_session: AsyncSession, google: FakeGoogleClients, ctx: TenantContext, synced: Callable[..., Any]
    ) -> None:
        tracking = await synced(gtm_tag_id_ga4=None)

        report = await _service(db_session, google).check(ctx, tracking.id)

        assert report.health_status == HealthStatus.MISSING_TAG

    async def test_removed_conversion_action(
        self, db_session: AsyncSession, google: FakeGoogleClients, ctx: TenantContext, synced: Callable[..., Any]
    ) -> None:
        tracking = await synced()
        google.ads_client.get_conversion_action.return_value = {"id": "555", "status": "REMOVED"}

        report = await _service(db_session, google).check(ctx, tracking.id)

        assert report.health_status == HealthStatus.MISSING_CONVERSION
        assert report.details["remoteStatus"] == "REMOVED"

    async def test_skipped_ads_sync_is_not_checked(
        self, db_session: AsyncSession, google: FakeGoogleClients, ctx: TenantContext, synced: Callable[..., Any]
    ) -> None:
        tracking = await synced(conversion_action_id=None, gtm_tag_id_ads=None, ads_sync_state=SyncState.SKIPPED)

        report = await _service(db_session, google).check(ctx, tracking.id)

        assert report.health_status == HealthStatus.HEALTHY
        google.ads_client.get_conversion_action.assert_not_called()

    async def test_google_unreachable(
        self, db_session: AsyncSession, google: FakeGoogleClients, ctx: TenantContext, synced: Callable[..., Any]
    ) -> None:
        tracking = await synced()
        google.gtm_client.get_workspace.side_effect = httpx.ConnectError("dns")

        with pytest.raises(ExternalServiceError):
            await _service(db_session, google).check(ctx, tracking.id)
        assert tracking.health_status == HealthStatus.UNCHECKED
