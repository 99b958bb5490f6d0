"""Tests for the Google connect flow and resource bootstrap."""

import asyncio
import time
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse

import fakeredis.aioredis
import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import TenantContext
from app.core.errors import NotFoundError, ValidationFailed
from app.integrations.google import oauth
from app.integrations.google.gtm import WorkspaceRef
from app.models.customer import Customer
from app.models.ga4_property import GA4Property
from app.models.google_ads_account import GoogleAdsAccount
from app.models.oauth_token import OAuthToken
from app.models.tenant import Tenant
from app.services.bootstrap_service import (
    STATE_KEY_PREFIX,
    GoogleConnectService,
    decode_state,
    encode_state,
    settle_all,
)
from tests.conftest import FakeGoogleClients


def _state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


def _configure_google(google: FakeGoogleClients) -> None:
    """Every branch succeeds: account 100, container 200, property 77, one Ads account."""
    google.gtm_client.list_accounts.return_value = [{"accountId": "100"}]
    google.gtm_client.get_or_create_container.return_value = {
        "containerId": "200",
        "name": "OneClickTag - Acme Co",
        "publicId": "GTM-ACME",
    }
    google.gtm_client.get_or_create_workspace.return_value = WorkspaceRef("100", "200", "3")
    google.gtm_client.setup_workspace_essentials.return_value = {}
    google.ga4_client.list_account_summaries.return_value = [{"account": "accounts/55"}]
    google.ga4_client.get_or_create_property.return_value = "77"
    google.ga4_client.get_or_create_web_data_stream.return_value = {
        "data_stream_id": "44",
        "measurement_id": "G-NEW",
    }
    google.ads_client.list_accessible_customers.return_value = ["111", "222"]
    google.ads_client.get_account_details.side_effect = [
        {"id": "111", "name": "Acme Ads", "currency": "USD", "time_zone": "UTC", "manager": False},
        {"id": "222", "name": "Agency MCC", "manager": True},
    ]
    google.ads_client.get_or_create_label.return_value = "customers/111/labels/9"


# ---------------------------------------------------------------------------
# settle_all
# ---------------------------------------------------------------------------


class TestSettleAll:
    async def test_every_branch_reports(self) -> None:
        async def ok() -> int:
            await asyncio.sleep(0)
            return 1

        async def boom() -> int:
            raise RuntimeError("quota")

        settled = await settle_all({"a": ok(), "b": boom(), "c": ok()})

        assert [(s.name, s.ok) for s in settled] == [("a", True), ("b", False), ("c", True)]
        assert settled[1].error == "quota"
        assert settled[2].value == 1

    async def test_empty(self) -> None:
        assert await settle_all({}) == []


# ---------------------------------------------------------------------------
# OAuth state
# ---------------------------------------------------------------------------


class TestState:
    def test_round_trip(self) -> None:
        data = {"customerId": "c1", "nonce": "n", "ts": 1}
        assert decode_state(encode_state(data)) == data

    @pytest.mark.parametrize("state", ["%%%", encode_state({"a": 1})[:-3] + "!!!"])
    def test_garbage(self, state: str) -> None:
        with pytest.raises(ValidationFailed):
            decode_state(state)

    async def test_nonce_is_single_use(
        self,
        db_session: AsyncSession,
        fake_redis: fakeredis.aioredis.FakeRedis,
        google: FakeGoogleClients,
        ctx: TenantContext,
        customer_factory: Callable[..., Any],
    ) -> None:
        customer = await customer_factory()
        service = GoogleConnectService(db_session, fake_redis, google)  # type: ignore[arg-type]

        state = _state_from(await service.connect_url(ctx, customer.id))
        data = await service.validate_state(state)

        assert data["customerId"] == str(customer.id)
        assert data["scopes"] == ["gtm", "ga4", "ads"]
        with pytest.raises(ValidationFailed):
            await service.validate_state(state)

    async def test_expired_state(
        self,
        db_session: AsyncSession,
        fake_redis: fakeredis.aioredis.FakeRedis,
    ) -> None:
        await fake_redis.set(f"{STATE_KEY_PREFIX}n1", "c1")
        state = encode_state({"customerId": "c1", "nonce": "n1", "ts": int(time.time()) - 3600})

        with pytest.raises(ValidationFailed, match="expired"):
            await GoogleConnectService(db_session, fake_redis).validate_state(state)

    async def test_connect_for_foreign_customer(
        self,
        db_session: AsyncSession,
        fake_redis: fakeredis.aioredis.FakeRedis,
        ctx: TenantContext,
        tenant_factory: Callable[..., Any],
        customer_factory: Callable[..., Any],
    ) -> None:
        other = await tenant_factory(external_org_id="other-org-id", name="Other")
        customer = await customer_factory(tenant_id=other.id)
        with pytest.raises(NotFoundError):
            await GoogleConnectService(db_session, fake_redis).connect_url(ctx, customer.id)


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------


class TestBootstrap:
    async def test_full_bootstrap(
        self,
        db_session: AsyncSession,
        fake_redis: fakeredis.aioredis.FakeRedis,
        google: FakeGoogleClients,
        tenant: Tenant,
        customer_factory: Callable[..., Any],
    ) -> None:
        _configure_google(google)
        customer = await customer_factory(measurement_id=None)
        service = GoogleConnectService(db_session, fake_redis, google)  # type: ignore[arg-type]

        report = await service.bootstrap(tenant.id, customer)

        assert report.as_dict() == {
            "tenant": {"gtm_account": True, "ga4_property": True},
            "customer": {"gtm_container": True, "ga4_data_stream": True, "ads_accounts": True},
            "errors": {},
        }
        assert (tenant.gtm_account_id, tenant.ga4_account_id, tenant.ga4_shared_property_id) == ("100", "55", "77")
        assert customer.gtm_container_id == "200"
        assert customer.gtm_container_public_id == "GTM-ACME"
        assert customer.gtm_workspace_id == "3"

        prop = (await db_session.execute(select(GA4Property))).scalar_one()
        assert (prop.property_id, prop.data_stream_id, prop.measurement_id) == ("77", "44", "G-NEW")
        accounts = (await db_session.execute(select(GoogleAdsAccount))).scalars().all()
        assert [(a.account_id, a.label_resource) for a in accounts] == [("111", "customers/111/labels/9")]

    async def test_failed_branch_does_not_block_others(
        self,
        db_session: AsyncSession,
        fake_redis: fakeredis.aioredis.FakeRedis,
        google: FakeGoogleClients,
        tenant: Tenant,
        customer_factory: Callable[..., Any],
    ) -> None:
        _configure_google(google)
        google.gtm_client.list_accounts.side_effect = RuntimeError("GTM API disabled")
        customer = await customer_factory(measurement_id=None)

        report = (await GoogleConnectService(db_session, fake_redis, google).bootstrap(tenant.id, customer)).as_dict()  # type: ignore[arg-type]

        assert report["tenant"] == {"gtm_account": False, "ga4_property": True}
        assert "gtm_container" not in report["customer"]
        assert report["customer"]["ga4_data_stream"] is True
        assert report["errors"] == {"gtm_account": "GTM API disabled"}
        assert tenant.gtm_account_id is None
        google.gtm_client.get_or_create_container.assert_not_awaited()

    async def test_rerun_is_idempotent(
        self,
        db_session: AsyncSession,
        fake_redis: fakeredis.aioredis.FakeRedis,
        google: FakeGoogleClients,
        tenant: Tenant,
        customer_factory: Callable[..., Any],
    ) -> None:
        customer = await customer_factory(measurement_id=None)
        service = GoogleConnectService(db_session, fake_redis, google)  # type: ignore[arg-type]
        _configure_google(google)
        await service.bootstrap(tenant.id, customer)
        _configure_google(google)
        await service.bootstrap(tenant.id, customer)

        assert len((await db_session.execute(select(GA4Property))).scalars().all()) == 1
        assert len((await db_session.execute(select(GoogleAdsAccount))).scalars().all()) == 1
        # Known ids are not rediscovered
        google.gtm_client.list_accounts.assert_awaited_once()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


class TestGoogleRoutes:
    async def test_connect_and_callback(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        google: FakeGoogleClients,
        customer_factory: Callable[..., Any],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        customer = await customer_factory(connected=False, measurement_id=None)
        _configure_google(google)
        monkeypatch.setattr(
            oauth,
            "exchange_code",
            AsyncMock(return_value=oauth.TokenSet("access", "refresh", None)),
        )
        monkeypatch.setattr(
            oauth, "get_userinfo", AsyncMock(return_value={"id": "g-42", "email": "owner@acme.example"})
        )

        connect = await client.get("/api/v1/google/connect", params={"customerId": str(customer.id), "scopes": "gtm"})
        assert connect.status_code == 200
        state = _state_from(connect.json()["data"]["authUrl"])

        callback = await client.get("/api/v1/google/callback", params={"code": "abc", "state": state})

        assert callback.status_code == 307
        location = parse_qs(urlparse(callback.headers["location"]).query)
        assert location["google"] == ["connected"]
        assert location["customerId"] == [str(customer.id)]
        assert location["bootstrap"] == ["ok"]

        customer_id = customer.id
        db_session.expire_all()
        refreshed = await db_session.get(Customer, customer_id)
        assert refreshed is not None
        assert refreshed.google_account_id == "g-42"
        assert refreshed.gtm_container_id == "200"
        scopes = {t.scope.value for t in (await db_session.execute(select(OAuthToken))).scalars().all()}
        assert scopes == {"gtm", "userinfo"}

        replay = await client.get("/api/v1/google/callback", params={"code": "abc", "state": state})
        assert parse_qs(urlparse(replay.headers["location"]).query)["google"] == ["error"]

    async def test_unknown_scope(self, client: AsyncClient, customer_factory: Callable[..., Any]) -> None:
        customer = await customer_factory()
        response = await client.get(
            "/api/v1/google/connect", params={"customerId": str(customer.id), "scopes": "gtm,youtube"}
        )
        assert response.status_code == 400

    async def test_denied_consent_redirects_with_error(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/google/callback", params={"error": "access_denied"})
        location = parse_qs(urlparse(response.headers["location"]).query)
        assert location == {"google": ["error"], "reason": ["access_denied"]}
