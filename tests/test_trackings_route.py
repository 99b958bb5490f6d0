"""Tests for tracking CRUD API endpoints.

Covers:
- POST /api/v1/trackings (create and job fan-out)
- GET /api/v1/trackings (list, filters, pagination)
- GET/PUT/DELETE /api/v1/trackings/{id}
- GET /api/v1/trackings/{id}/status
- POST /api/v1/trackings/{id}/health-check
- POST /api/v1/trackings/batch-sync
"""

import uuid
from collections.abc import Callable
from typing import Any

import fakeredis.aioredis
import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import TenantContext
from app.core.errors import ExternalServiceError
from app.models.tenant import Tenant
from app.models.tracking import Tracking, TrackingStatus
from app.schemas.tracking import TrackingCreate
from app.services.job_queue import ADS_SYNC_QUEUE, GTM_SYNC_QUEUE
from app.services.realtime import RealtimeChannel
from app.services.tracking_service import TrackingService
from tests.conftest import OTHER_ORG_ID, RecordingJobQueue


def _payload(customer_id: uuid.UUID, **overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "customerId": str(customer_id),
        "name": "Signup Button",
        "type": "BUTTON_CLICK",
        "destinations": ["GA4"],
        "selector": "#signup",
    }
    body.update(overrides)
    return body


async def _tracking_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count(Tracking.id)))).scalar_one()


# ---------------------------------------------------------------------------
# POST /api/v1/trackings
# ---------------------------------------------------------------------------


class TestCreateTracking:
    """Creating a tracking persists it and queues its sync jobs."""

    async def test_ga4_only_enqueues_one_gtm_job(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
    ) -> None:
        customer = await customer_factory()
        response = await client.post("/api/v1/trackings", json=_payload(customer.id))

        assert response.status_code == 201
        body = response.json()
        assert body["data"]["status"] == "CREATING"
        assert body["data"]["ga4EventName"] == "button_click"
        assert body["data"]["gtmSyncState"] == "PENDING"
        assert body["data"]["adsSyncState"] == "NOT_REQUIRED"
        assert body["jobs"]["gtmSyncJobId"] is not None
        assert body["jobs"]["adsSyncJobId"] is None
        assert len(job_queue.jobs) == 1
        assert job_queue.jobs[0][0] == GTM_SYNC_QUEUE
        assert job_queue.jobs[0][1]["action"] == "create"

    @pytest.mark.parametrize("destinations", [["GOOGLE_ADS"], ["BOTH"], ["GA4", "GOOGLE_ADS"]])
    async def test_ads_destinations_enqueue_two_jobs(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
        destinations: list[str],
    ) -> None:
        customer = await customer_factory()
        response = await client.post(
            "/api/v1/trackings", json=_payload(customer.id, destinations=destinations)
        )

        assert response.status_code == 201
        assert response.json()["data"]["adsSyncState"] == "PENDING"
        assert [q for q, _ in job_queue.jobs] == [GTM_SYNC_QUEUE, ADS_SYNC_QUEUE]

    async def test_explicit_event_name_is_kept(
        self, client: AsyncClient, customer_factory: Callable[..., Any]
    ) -> None:
        customer = await customer_factory()
        response = await client.post(
            "/api/v1/trackings", json=_payload(customer.id, ga4EventName="cta_signup")
        )
        assert response.json()["data"]["ga4EventName"] == "cta_signup"

    async def test_google_not_connected_returns_400_without_side_effects(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        customer_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
    ) -> None:
        customer = await customer_factory(connected=False)
        response = await client.post("/api/v1/trackings", json=_payload(customer.id))

        assert response.status_code == 400
        assert "Google account not connected" in response.json()["error"]
        assert job_queue.jobs == []
        assert await _tracking_count(db_session) == 0

    async def test_foreign_customer_returns_404(
        self,
        client: AsyncClient,
        tenant_factory: Callable[..., Any],
        customer_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
    ) -> None:
        other = await tenant_factory(external_org_id=OTHER_ORG_ID, name="Other")
        customer = await customer_factory(tenant_id=other.id)
        response = await client.post("/api/v1/trackings", json=_payload(customer.id))

        assert response.status_code == 404
        assert job_queue.jobs == []

    async def test_broker_failure_marks_tracking_failed(
        self,
        db_session: AsyncSession,
        ctx: TenantContext,
        customer_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
    ) -> None:
        customer = await customer_factory()
        job_queue.fail_with = ConnectionError("broker down")
        data = TrackingCreate.model_validate(_payload(customer.id))

        with pytest.raises(ExternalServiceError):
            await TrackingService(db_session, job_queue).create(ctx, data)  # type: ignore[arg-type]

        tracking = (await db_session.execute(select(Tracking))).scalar_one()
        assert tracking.status == TrackingStatus.FAILED
        assert "broker down" in (tracking.last_error or "")

    async def test_rejects_empty_destinations(
        self, client: AsyncClient, customer_factory: Callable[..., Any]
    ) -> None:
        customer = await customer_factory()
        response = await client.post("/api/v1/trackings", json=_payload(customer.id, destinations=[]))
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# GET /api/v1/trackings
# ---------------------------------------------------------------------------


class TestListTrackings:
    async def test_filters_and_paginates(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
    ) -> None:
        customer = await customer_factory()
        for i in range(3):
            await tracking_factory(customer, name=f"Checkout button {i}")
        await tracking_factory(customer, name="Newsletter", status=TrackingStatus.FAILED)

        response = await client.get(
            "/api/v1/trackings",
            params={"customerId": str(customer.id), "search": "CHECKOUT", "limit": 2, "sortBy": "name", "sortOrder": "asc"},
        )

        assert response.status_code == 200
        body = response.json()
        assert [t["name"] for t in body["data"]] == ["Checkout button 0", "Checkout button 1"]
        assert body["pagination"] == {
            "page": 1,
            "limit": 2,
            "total": 3,
            "totalPages": 2,
            "hasMore": True,
        }

    async def test_status_filter(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
    ) -> None:
        customer = await customer_factory()
        await tracking_factory(customer, name="Ok")
        await tracking_factory(customer, name="Broken", status=TrackingStatus.FAILED)

        response = await client.get("/api/v1/trackings", params={"status": "FAILED"})
        assert [t["name"] for t in response.json()["data"]] == ["Broken"]

    async def test_other_tenants_trackings_are_invisible(
        self,
        client: AsyncClient,
        tenant_factory: Callable[..., Any],
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
    ) -> None:
        other = await tenant_factory(external_org_id=OTHER_ORG_ID, name="Other")
        foreign = await customer_factory(tenant_id=other.id)
        tracking = await tracking_factory(foreign)

        listed = await client.get("/api/v1/trackings")
        assert listed.json()["data"] == []
        assert (await client.get(f"/api/v1/trackings/{tracking.id}")).status_code == 404


# ---------------------------------------------------------------------------
# PUT /api/v1/trackings/{id}
# ---------------------------------------------------------------------------


class TestUpdateTracking:
    @pytest.mark.parametrize("in_flight", [TrackingStatus.CREATING, TrackingStatus.SYNCING])
    async def test_in_flight_update_is_rejected_and_nothing_changes(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
        in_flight: TrackingStatus,
    ) -> None:
        customer = await customer_factory()
        tracking = await tracking_factory(customer, status=in_flight)

        response = await client.put(f"/api/v1/trackings/{tracking.id}", json={"name": "Renamed"})

        assert response.status_code == 409
        await db_session.refresh(tracking)
        assert tracking.name == "Signup Button"
        assert tracking.status == in_flight
        assert job_queue.jobs == []

    async def test_active_synced_tracking_resyncs_on_shape_change(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
    ) -> None:
        customer = await customer_factory()
        tracking = await tracking_factory(customer, gtm_trigger_id="11", gtm_tag_id_ga4="12")

        response = await client.put(f"/api/v1/trackings/{tracking.id}", json={"selector": "#join"})

        assert response.status_code == 200
        body = response.json()
        assert body["resyncTriggered"] is True
        assert body["data"]["status"] == "SYNCING"
        assert [payload["action"] for _, payload in job_queue.jobs] == ["update"]

    async def test_description_change_does_not_resync(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
    ) -> None:
        customer = await customer_factory()
        tracking = await tracking_factory(customer, gtm_trigger_id="11")

        response = await client.put(
            f"/api/v1/trackings/{tracking.id}", json={"description": "Main CTA"}
        )

        assert response.status_code == 200
        assert response.json()["resyncTriggered"] is False
        assert response.json()["data"]["status"] == "ACTIVE"
        assert job_queue.jobs == []

    async def test_unsynced_tracking_does_not_resync(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
    ) -> None:
        customer = await customer_factory()
        tracking = await tracking_factory(customer)

        response = await client.put(f"/api/v1/trackings/{tracking.id}", json={"name": "New name"})

        assert response.json()["resyncTriggered"] is False
        assert job_queue.jobs == []


# ---------------------------------------------------------------------------
# DELETE /api/v1/trackings/{id}
# ---------------------------------------------------------------------------


class TestDeleteTracking:
    async def test_in_flight_delete_is_rejected(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
    ) -> None:
        customer = await customer_factory()
        tracking = await tracking_factory(customer, status=TrackingStatus.SYNCING)

        response = await client.delete(f"/api/v1/trackings/{tracking.id}")

        assert response.status_code == 409
        assert await _tracking_count(db_session) == 1
        assert job_queue.jobs == []

    async def test_never_synced_ga4_tracking_needs_no_jobs(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
    ) -> None:
        customer = await customer_factory()
        tracking = await tracking_factory(customer)

        response = await client.delete(f"/api/v1/trackings/{tracking.id}")

        assert response.status_code == 200
        assert response.json()["jobs"] == {"gtmSyncJobId": None, "adsSyncJobId": None}
        assert job_queue.jobs == []
        assert await _tracking_count(db_session) == 0

    async def test_trigger_only_enqueues_gtm_cleanup(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
    ) -> None:
        customer = await customer_factory(gtm_account_id="100")
        tracking = await tracking_factory(
            customer, gtm_trigger_id="7", gtm_container_id="200", gtm_workspace_id="3"
        )

        await client.delete(f"/api/v1/trackings/{tracking.id}")

        assert len(job_queue.jobs) == 1
        queue, payload = job_queue.jobs[0]
        assert queue == GTM_SYNC_QUEUE
        assert payload["action"] == "delete"
        assert payload["remote"]["gtm_trigger_id"] == "7"
        assert payload["remote"]["gtm_account_id"] == "100"

    async def test_ads_destination_enqueues_ads_cleanup(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
    ) -> None:
        customer = await customer_factory()
        tracking = await tracking_factory(
            customer,
            destinations=["BOTH"],
            gtm_trigger_id="7",
            conversion_action_id="555",
            ads_account_id="1234567890",
        )

        await client.delete(f"/api/v1/trackings/{tracking.id}")

        assert [q for q, _ in job_queue.jobs] == [GTM_SYNC_QUEUE, ADS_SYNC_QUEUE]
        assert job_queue.jobs[1][1]["remote"]["conversion_action_id"] == "555"


# ---------------------------------------------------------------------------
# Status, health check, batch sync
# ---------------------------------------------------------------------------


class TestTrackingStatus:
    async def test_get_wraps_tracking_in_data(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
    ) -> None:
        customer = await customer_factory()
        tracking = await tracking_factory(customer, name="Hero CTA")

        response = await client.get(f"/api/v1/trackings/{tracking.id}")

        assert response.status_code == 200
        assert response.json()["data"]["id"] == str(tracking.id)
        assert response.json()["data"]["name"] == "Hero CTA"

    async def test_status_view(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
    ) -> None:
        customer = await customer_factory()
        tracking = await tracking_factory(
            customer, gtm_trigger_id="7", gtm_tag_id_ga4="8", gtm_job_id="gtm-sync-1"
        )

        response = await client.get(
            f"/api/v1/trackings/{tracking.id}/status", params={"includeJobs": "true"}
        )

        assert response.status_code == 200
        body = response.json()["data"]
        assert body["gtm"]["synced"] is True
        assert body["googleAds"]["synced"] is False
        assert body["jobs"]["gtm"]["state"] == "waiting"
        assert body["health"]["statusLabel"] == "Active"
        assert body["health"]["statusColor"] == "green"
        assert body["health"]["isHealthy"] is True

    async def test_never_synced_health_check_is_unchecked(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
    ) -> None:
        customer = await customer_factory()
        tracking = await tracking_factory(customer)

        response = await client.post(f"/api/v1/trackings/{tracking.id}/health-check")

        assert response.status_code == 200
        assert response.json()["data"]["healthStatus"] == "UNCHECKED"


class TestBatchSync:
    async def test_skips_in_flight_and_unknown(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        tracking_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
        tenant: Tenant,
        fake_redis: fakeredis.aioredis.FakeRedis,
    ) -> None:
        customer = await customer_factory()
        ready = await tracking_factory(customer, status=TrackingStatus.FAILED)
        busy = await tracking_factory(customer, status=TrackingStatus.CREATING)
        missing = uuid.uuid4()

        response = await client.post(
            "/api/v1/trackings/batch-sync",
            json={"trackingIds": [str(ready.id), str(busy.id), str(missing)]},
        )

        assert response.status_code == 202
        body = response.json()["data"]
        assert body["queued"] == [str(ready.id)]
        assert {s["reason"] for s in body["skipped"]} == {"sync in progress", "not found"}
        assert body["totalJobs"] == 1
        assert all(payload["batch_id"] == body["batchId"] for _, payload in job_queue.jobs)
        assert await RealtimeChannel(fake_redis).batch_owner(body["batchId"]) == str(tenant.id)
