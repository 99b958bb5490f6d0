"""Tests for recommendation review and bulk tracking creation endpoints."""

import uuid
from collections.abc import Callable
from typing import Any

from httpx import AsyncClient

from app.models.recommendation import RecommendationSeverity, RecommendationStatus
from app.models.tracking import TrackingType
from app.services.job_queue import GTM_SYNC_QUEUE
from tests.conftest import RecordingJobQueue


class TestRecommendationRoutes:
    async def test_list_sorted_and_filtered(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        scan_factory: Callable[..., Any],
        recommendation_factory: Callable[..., Any],
    ) -> None:
        customer = await customer_factory()
        scan = await scan_factory(customer)
        optional = await recommendation_factory(
            scan, name="Scroll Depth", tracking_type=TrackingType.SCROLL_DEPTH,
            severity=RecommendationSeverity.OPTIONAL, selector=None,
        )
        critical = await recommendation_factory(scan)
        base = f"/api/v1/customers/{customer.id}/scans/{scan.id}/recommendations"

        listed = await client.get(base)
        assert listed.status_code == 200
        assert [r["id"] for r in listed.json()["data"]] == [str(critical.id), str(optional.id)]
        assert listed.json()["data"][0]["suggestedDestinations"] == ["GA4", "GOOGLE_ADS"]

        filtered = await client.get(base, params={"severity": "OPTIONAL"})
        assert [r["id"] for r in filtered.json()["data"]] == [str(optional.id)]

        by_type = await client.get(base, params={"type": "ADD_TO_CART"})
        assert [r["id"] for r in by_type.json()["data"]] == [str(critical.id)]

    async def test_accept_reject_and_bulk_accept(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        scan_factory: Callable[..., Any],
        recommendation_factory: Callable[..., Any],
    ) -> None:
        customer = await customer_factory()
        scan = await scan_factory(customer)
        first = await recommendation_factory(scan)
        second = await recommendation_factory(scan, name="Checkout", selector=".checkout")
        created = await recommendation_factory(scan, name="Done", status=RecommendationStatus.CREATED)
        base = f"/api/v1/customers/{customer.id}/scans/{scan.id}/recommendations"

        rejected = await client.post(f"{base}/{first.id}/reject")
        assert rejected.json()["data"]["status"] == "REJECTED"
        accepted = await client.post(f"{base}/{first.id}/accept")
        assert accepted.json()["data"]["status"] == "ACCEPTED"

        final = await client.post(f"{base}/{created.id}/accept")
        assert final.status_code == 400

        bulk = await client.post(
            f"{base}/bulk-accept",
            json={"recommendationIds": [str(first.id), str(second.id), str(created.id)]},
        )
        assert bulk.json()["data"] == {"accepted": 1}

    async def test_bulk_create_trackings(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        scan_factory: Callable[..., Any],
        recommendation_factory: Callable[..., Any],
        job_queue: RecordingJobQueue,
    ) -> None:
        customer = await customer_factory()
        scan = await scan_factory(customer)
        rec = await recommendation_factory(scan)
        missing = uuid.uuid4()
        base = f"/api/v1/customers/{customer.id}/scans/{scan.id}/recommendations"

        response = await client.post(
            f"{base}/bulk-create-trackings",
            json={"recommendationIds": [str(rec.id), str(missing)], "destinations": ["GA4"]},
        )

        assert response.status_code == 200
        body = response.json()["data"]
        assert body["created"] == 1
        assert body["failed"] == 1
        assert body["total"] == 2
        assert body["errors"] == [{"recommendationId": str(missing), "error": "Recommendation not found"}]
        assert len(body["trackingIds"]) == 1
        assert len(job_queue.queued(GTM_SYNC_QUEUE)) == 1

        listed = await client.get(base)
        assert listed.json()["data"][0]["status"] == "CREATED"
        assert listed.json()["data"][0]["trackingId"] == body["trackingIds"][0]

    async def test_bulk_create_requires_connected_customer(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        scan_factory: Callable[..., Any],
        recommendation_factory: Callable[..., Any],
    ) -> None:
        customer = await customer_factory(connected=False)
        scan = await scan_factory(customer)
        rec = await recommendation_factory(scan)

        response = await client.post(
            f"/api/v1/customers/{customer.id}/scans/{scan.id}/recommendations/bulk-create-trackings",
            json={"recommendationIds": [str(rec.id)]},
        )

        assert response.status_code == 400

    async def test_empty_id_list_rejected(
        self, client: AsyncClient, customer_factory: Callable[..., Any], scan_factory: Callable[..., Any]
    ) -> None:
        customer = await customer_factory()
        scan = await scan_factory(customer)
        response = await client.post(
            f"/api/v1/customers/{customer.id}/scans/{scan.id}/recommendations/bulk-accept",
            json={"recommendationIds": []},
        )
        assert response.status_code == 422
