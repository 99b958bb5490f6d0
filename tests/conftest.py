"""Pytest configuration and fixtures for the OneClickTag API test suite.

Provides:
- In-memory SQLite database (aiosqlite) created fresh per test
- Mock authentication (JWT bypass)
- Mock Redis (fakeredis)
- Recording job queue and mocked Google API clients
- Disabled rate limiting
- Model factory fixtures for Tenant, Customer, Tracking, SiteScan,
  ScanPage and TrackingRecommendation
"""

import itertools
from collections.abc import AsyncGenerator, Callable
from typing import Any
from unittest.mock import AsyncMock

import fakeredis.aioredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.auth import get_current_user
from app.core.deps import TenantContext, get_db, get_google_clients, get_job_queue, get_redis
from app.core.rate_limit import limiter
from app.main import app
from app.models import Base
from app.models.customer import Customer
from app.models.ga4_property import GA4Property
from app.models.google_ads_account import GoogleAdsAccount
from app.models.recommendation import (
    FunnelStage,
    RecommendationSeverity,
    RecommendationStatus,
    TrackingRecommendation,
)
from app.models.site_scan import ScanPage, SiteScan, SiteScanStatus
from app.models.tenant import Tenant
from app.models.tracking import (
    HealthStatus,
    SyncState,
    Tracking,
    TrackingStatus,
    TrackingType,
)
from app.services.job_queue import ADS_SYNC_QUEUE, GTM_SYNC_QUEUE, JobHandle, SyncJobPayload

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
TEST_USER_ID = "test-user-id"
TEST_USER_EMAIL = "test@example.com"
TEST_ORG_ID = "test-org-id"
OTHER_ORG_ID = "other-org-id"

# ---------------------------------------------------------------------------
# Disable rate limiting globally for tests
# ---------------------------------------------------------------------------
limiter.enabled = False


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database per test.

    StaticPool keeps the single SQLite connection alive so every session
    (fixtures, services, API requests) sees the same data.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for test setup and for services under test."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Fake Redis
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis() -> fakeredis.aioredis.FakeRedis:
    """Provide a fresh fakeredis instance per test."""
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


# ---------------------------------------------------------------------------
# Job queue
# ---------------------------------------------------------------------------


class RecordingJobQueue:
    """Stands in for the Celery-backed JobQueue and records every enqueue."""

    def __init__(self) -> None:
        self.jobs: list[tuple[str, SyncJobPayload]] = []
        self.fail_with: Exception | None = None
        self._ids = itertools.count(1)
        self.owners: dict[str, str] = {}

    def _add(self, queue: str, payload: SyncJobPayload) -> JobHandle:
        if self.fail_with is not None:
            raise self.fail_with
        self.jobs.append((queue, payload))
        handle = JobHandle(id=f"{queue}-{next(self._ids)}", queue=queue)
        self.owners[handle.id] = payload["tenant_id"]
        return handle

    def add_gtm_sync_job(self, payload: SyncJobPayload) -> JobHandle:
        return self._add(GTM_SYNC_QUEUE, payload)

    def add_ads_sync_job(self, payload: SyncJobPayload) -> JobHandle:
        return self._add(ADS_SYNC_QUEUE, payload)

    def job_owner(self, job_id: str) -> str | None:
        return self.owners.get(job_id)

    def get_job_status(self, queue_name: str, job_id: str) -> dict[str, Any]:
        return {"id": job_id, "queue": queue_name, "state": "waiting"}

    def queued(self, queue: str) -> list[SyncJobPayload]:
        return [payload for q, payload in self.jobs if q == queue]


@pytest.fixture
def job_queue() -> RecordingJobQueue:
    return RecordingJobQueue()


# ---------------------------------------------------------------------------
# Google API clients
# ---------------------------------------------------------------------------


class FakeGoogleClients:
    """GoogleClientFactory replacement handing out AsyncMock API clients."""

    def __init__(self) -> None:
        self.gtm_client = AsyncMock(name="GTMClient")
        self.ga4_client = AsyncMock(name="GA4AdminClient")
        self.ads_client = AsyncMock(name="GoogleAdsClient")

    async def gtm(self, _tenant_id: Any, _user_id: str | None = None) -> AsyncMock:
        return self.gtm_client

    async def ga4(self, _tenant_id: Any, _user_id: str | None = None) -> AsyncMock:
        return self.ga4_client

    async def ads(
        self, _tenant_id: Any, _user_id: str | None = None, login_customer_id: str | None = None
    ) -> AsyncMock:
        return self.ads_client


@pytest.fixture
def google() -> FakeGoogleClients:
    return FakeGoogleClients()


# ---------------------------------------------------------------------------
# Auth mock
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_user() -> dict[str, Any]:
    """Return the default authenticated test user payload (mimics decoded JWT)."""
    return {
        "sub": TEST_USER_ID,
        "email": TEST_USER_EMAIL,
        "activeOrganizationId": TEST_ORG_ID,
    }


# ---------------------------------------------------------------------------
# Authenticated client (overrides DB, Redis, Auth, job queue, Google)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: fakeredis.aioredis.FakeRedis,
    auth_user: dict[str, Any],
    job_queue: RecordingJobQueue,
    google: FakeGoogleClients,
) -> AsyncGenerator[AsyncClient, None]:
    """Authenticated async test client with all dependencies overridden."""

    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as s:
            yield s

    async def _override_user() -> dict[str, Any]:
        return auth_user

    async def _override_redis() -> AsyncGenerator[fakeredis.aioredis.FakeRedis, None]:
        yield fake_redis

    app.dependency_overrides[get_db] = _override_session
    app.dependency_overrides[get_current_user] = _override_user
    app.dependency_overrides[get_redis] = _override_redis
    app.dependency_overrides[get_job_queue] = lambda: job_queue
    app.dependency_overrides[get_google_clients] = lambda: google

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Unauthenticated client (overrides DB & Redis only, no auth bypass)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def unauthed_client(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: fakeredis.aioredis.FakeRedis,
) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated async test client. Auth is NOT overridden."""

    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as s:
            yield s

    async def _override_redis() -> AsyncGenerator[fakeredis.aioredis.FakeRedis, None]:
        yield fake_redis

    app.dependency_overrides[get_db] = _override_session
    app.dependency_overrides[get_redis] = _override_redis

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Model Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def tenant_factory(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory that creates Tenant rows; the default org matches ``auth_user``."""

    async def _create(*, external_org_id: str = TEST_ORG_ID, name: str = "Test Agency", **kwargs: Any) -> Tenant:
        tenant = Tenant(external_org_id=external_org_id, name=name, **kwargs)
        db_session.add(tenant)
        await db_session.commit()
        return tenant

    return _create


@pytest_asyncio.fixture
async def tenant(tenant_factory: Callable[..., Any]) -> Tenant:
    return await tenant_factory()


@pytest.fixture
def ctx(tenant: Tenant) -> TenantContext:
    return TenantContext(tenant_id=tenant.id, user_id=TEST_USER_ID, org_id=TEST_ORG_ID)


@pytest.fixture
def customer_factory(db_session: AsyncSession, tenant: Tenant) -> Callable[..., Any]:
    """Factory that creates Customer rows, Google-connected by default."""

    async def _create(
        *,
        tenant_id: Any = None,
        name: str = "Acme Co",
        website_url: str | None = "https://acme.example",
        connected: bool = True,
        measurement_id: str | None = "G-TEST123",
        ads_account_id: str | None = None,
        **kwargs: Any,
    ) -> Customer:
        customer = Customer(
            tenant_id=tenant_id or tenant.id,
            name=name,
            website_url=website_url,
            google_account_id="google-user-1" if connected else None,
            google_email="owner@acme.example" if connected else None,
            **kwargs,
        )
        db_session.add(customer)
        await db_session.flush()
        if measurement_id:
            db_session.add(
                GA4Property(
                    tenant_id=customer.tenant_id,
                    customer_id=customer.id,
                    property_id="properties/1",
                    measurement_id=measurement_id,
                    website_url=website_url,
                )
            )
        if ads_account_id:
            db_session.add(
                GoogleAdsAccount(
                    tenant_id=customer.tenant_id,
                    customer_id=customer.id,
                    account_id=ads_account_id,
                )
            )
        await db_session.commit()
        await db_session.refresh(customer)
        return customer

    return _create


@pytest.fixture
def tracking_factory(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory that creates Tracking rows directly, bypassing the job queue."""

    async def _create(
        customer: Customer,
        *,
        name: str = "Signup Button",
        type: TrackingType = TrackingType.BUTTON_CLICK,  # noqa: A002
        destinations: list[str] | None = None,
        status: TrackingStatus = TrackingStatus.ACTIVE,
        selector: str | None = "#signup",
        **kwargs: Any,
    ) -> Tracking:
        tracking = Tracking(
            tenant_id=customer.tenant_id,
            customer_id=customer.id,
            name=name,
            type=type,
            destinations=destinations or ["GA4"],
            status=status,
            selector=selector,
            ga4_event_name=kwargs.pop("ga4_event_name", "signup_click"),
            health_status=kwargs.pop("health_status", HealthStatus.UNCHECKED),
            gtm_sync_state=kwargs.pop("gtm_sync_state", SyncState.SUCCEEDED),
            ads_sync_state=kwargs.pop("ads_sync_state", SyncState.NOT_REQUIRED),
            **kwargs,
        )
        db_session.add(tracking)
        await db_session.commit()
        return tracking

    return _create


@pytest.fixture
def scan_factory(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory that creates SiteScan rows in any phase."""

    async def _create(
        customer: Customer,
        *,
        status: SiteScanStatus = SiteScanStatus.DEEP_CRAWLING,
        website_url: str = "https://acme.example",
        **kwargs: Any,
    ) -> SiteScan:
        scan = SiteScan(
            tenant_id=customer.tenant_id,
            customer_id=customer.id,
            status=status,
            website_url=website_url,
            max_pages=kwargs.pop("max_pages", 20),
            max_depth=kwargs.pop("max_depth", 3),
            **kwargs,
        )
        db_session.add(scan)
        await db_session.commit()
        return scan

    return _create


@pytest.fixture
def page_factory(db_session: AsyncSession) -> Callable[..., Any]:
    async def _create(scan: SiteScan, url: str, **kwargs: Any) -> ScanPage:
        page = ScanPage(
            scan_id=scan.id,
            url=url,
            depth=kwargs.pop("depth", 1),
            page_type=kwargs.pop("page_type", "other"),
            **kwargs,
        )
        db_session.add(page)
        await db_session.commit()
        return page

    return _create


@pytest.fixture
def recommendation_factory(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory that creates TrackingRecommendation rows."""

    async def _create(
        scan: SiteScan,
        *,
        name: str = "Add to Cart",
        tracking_type: TrackingType = TrackingType.ADD_TO_CART,
        severity: RecommendationSeverity = RecommendationSeverity.CRITICAL,
        status: RecommendationStatus = RecommendationStatus.PENDING,
        selector: str | None = ".add-to-cart",
        page_url: str = "https://acme.example/products/widget",
        **kwargs: Any,
    ) -> TrackingRecommendation:
        rec = TrackingRecommendation(
            scan_id=scan.id,
            name=name,
            tracking_type=tracking_type,
            severity=severity,
            status=status,
            selector=selector,
            page_url=page_url,
            funnel_stage=kwargs.pop("funnel_stage", FunnelStage.BOTTOM),
            suggested_ga4_event_name=kwargs.pop("suggested_ga4_event_name", "add_to_cart"),
            suggested_destinations=kwargs.pop("suggested_destinations", ["GA4", "GOOGLE_ADS"]),
            suggested_config=kwargs.pop("suggested_config", {}),
            **kwargs,
        )
        db_session.add(rec)
        await db_session.commit()
        return rec

    return _create
