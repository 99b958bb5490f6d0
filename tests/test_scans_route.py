"""Tests for site scan API endpoints that do not touch the network.

Crawling itself is exercised in test_scan_service.py against a mock transport.
"""

import uuid
from collections.abc import Callable
from typing import Any

from httpx import AsyncClient

from app.models.site_scan import SiteScanStatus


class TestScanRoutes:
    async def test_list_and_get(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        scan_factory: Callable[..., Any],
        page_factory: Callable[..., Any],
        recommendation_factory: Callable[..., Any],
    ) -> None:
        customer = await customer_factory()
        scan = await scan_factory(customer)
        await page_factory(scan, "https://acme.example/", depth=0, page_type="homepage", importance_score=0.2)
        await page_factory(scan, "https://acme.example/checkout", page_type="checkout", importance_score=1.0)
        await recommendation_factory(scan)

        listed = await client.get(f"/api/v1/customers/{customer.id}/scans")
        assert listed.status_code == 200
        assert [s["id"] for s in listed.json()["data"]] == [str(scan.id)]
        assert listed.json()["data"][0]["status"] == "DEEP_CRAWLING"

        detail = await client.get(f"/api/v1/customers/{customer.id}/scans/{scan.id}")
        assert detail.status_code == 200
        body = detail.json()["data"]
        assert body["scan"]["id"] == str(scan.id)
        assert [p["pageType"] for p in body["pages"]] == ["checkout", "homepage"]
        assert body["totalRecommendations"] == 1
        assert body["recommendationCounts"]["critical"] == 1

    async def test_unknown_scan_returns_404(self, client: AsyncClient, customer_factory: Callable[..., Any]) -> None:
        customer = await customer_factory()
        response = await client.get(f"/api/v1/customers/{customer.id}/scans/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json() == {"error": "Scan not found"}

    async def test_confirm_niche(
        self, client: AsyncClient, customer_factory: Callable[..., Any], scan_factory: Callable[..., Any]
    ) -> None:
        customer = await customer_factory()
        scan = await scan_factory(customer, status=SiteScanStatus.AWAITING_CONFIRMATION, detected_niche="saas")

        response = await client.post(
            f"/api/v1/customers/{customer.id}/scans/{scan.id}/confirm-niche", json={"niche": "e-commerce"}
        )

        assert response.status_code == 200
        assert response.json()["data"]["confirmedNiche"] == "e-commerce"
        assert response.json()["data"]["status"] == "DEEP_CRAWLING"

    async def test_confirm_niche_wrong_state(
        self, client: AsyncClient, customer_factory: Callable[..., Any], scan_factory: Callable[..., Any]
    ) -> None:
        customer = await customer_factory()
        scan = await scan_factory(customer, status=SiteScanStatus.CRAWLING)

        response = await client.post(
            f"/api/v1/customers/{customer.id}/scans/{scan.id}/confirm-niche", json={"niche": "e-commerce"}
        )

        assert response.status_code == 400

    async def test_invalid_chunk_phase(
        self, client: AsyncClient, customer_factory: Callable[..., Any], scan_factory: Callable[..., Any]
    ) -> None:
        customer = await customer_factory()
        scan = await scan_factory(customer)

        response = await client.post(
            f"/api/v1/customers/{customer.id}/scans/{scan.id}/process-chunk", json={"phase": "phase3"}
        )

        assert response.status_code == 422

    async def test_phase2_before_confirmation_is_409(
        self, client: AsyncClient, customer_factory: Callable[..., Any], scan_factory: Callable[..., Any]
    ) -> None:
        customer = await customer_factory()
        scan = await scan_factory(customer, status=SiteScanStatus.CRAWLING)

        response = await client.post(
            f"/api/v1/customers/{customer.id}/scans/{scan.id}/process-chunk", json={"phase": "phase2"}
        )

        assert response.status_code == 409

    async def test_finalize_then_cancel(
        self,
        client: AsyncClient,
        customer_factory: Callable[..., Any],
        scan_factory: Callable[..., Any],
        recommendation_factory: Callable[..., Any],
    ) -> None:
        customer = await customer_factory()
        scan = await scan_factory(customer, status=SiteScanStatus.DEEP_CRAWLING, phase2_complete=True)
        await recommendation_factory(scan)
        base = f"/api/v1/customers/{customer.id}/scans/{scan.id}"

        finalized = await client.post(f"{base}/finalize")
        assert finalized.status_code == 200
        body = finalized.json()["data"]
        assert body["status"] == "COMPLETED"
        assert body["totalRecommendations"] == 1
        assert body["trackingReadinessScore"] is not None

        cancelled = await client.post(f"{base}/cancel")
        assert cancelled.status_code == 400

    async def test_cancel_running_scan(
        self, client: AsyncClient, customer_factory: Callable[..., Any], scan_factory: Callable[..., Any]
    ) -> None:
        customer = await customer_factory()
        scan = await scan_factory(customer, status=SiteScanStatus.CRAWLING)

        response = await client.post(f"/api/v1/customers/{customer.id}/scans/{scan.id}/cancel")

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "CANCELLED"

    async def test_start_validates_limits(self, client: AsyncClient, customer_factory: Callable[..., Any]) -> None:
        customer = await customer_factory()
        response = await client.post(f"/api/v1/customers/{customer.id}/scans", json={"maxPages": 0})
        assert response.status_code == 422
