"""Google OAuth connect flow and the idempotent tenant/customer bootstrap.

The bootstrap fans out independent GTM, GA4 and Ads setup calls with
``settle_all``: every branch runs to completion and reports its own outcome,
so one Google failure never aborts the others or the OAuth callback.
Remote calls run concurrently; database writes are applied afterwards, one
branch at a time, because an AsyncSession must not be shared across tasks.
"""

import asyncio
import base64
import json
import logging
import secrets
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import redis.asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.deps import TenantContext
from app.core.errors import DomainError, NotFoundError, ValidationFailed
from app.integrations.google import oauth
from app.integrations.google.ads import GoogleAdsClient
from app.integrations.google.ga4 import SHARED_PROPERTY_NAME, GA4AdminClient
from app.integrations.google.gtm import GTMClient
from app.models.customer import Customer
from app.models.ga4_property import GA4Property
from app.models.google_ads_account import GoogleAdsAccount
from app.models.oauth_token import TokenScope
from app.models.tenant import Tenant
from app.services.token_service import GoogleClientFactory, TokenService

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "oneclicktag:oauth-state:"
DEFAULT_SCOPES = [TokenScope.GTM, TokenScope.GA4, TokenScope.ADS]


# === settle_all ===


@dataclass
class Settled:
    """Outcome of one branch of a ``settle_all`` fan-out."""

    name: str
    ok: bool
    value: Any = None
    error: str | None = None


async def settle_all(tasks: dict[str, Awaitable[Any]]) -> list[Settled]:
    """Run all awaitables concurrently and capture each result or exception.

    Never raises; failures are logged and reported in the returned list,
    in the same order as ``tasks``.
    """
    names = list(tasks)
    results = await asyncio.gather(*tasks.values(), return_exceptions=True)
    settled: list[Settled] = []
    for name, result in zip(names, results, strict=True):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            logger.warning("Bootstrap step %s failed: %s", name, result)
            settled.append(Settled(name, ok=False, error=str(result) or type(result).__name__))
        else:
            settled.append(Settled(name, ok=True, value=result))
    return settled


# === OAuth state ===


def encode_state(data: dict[str, Any]) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def decode_state(state: str) -> dict[str, Any]:
    padded = state + "=" * (-len(state) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded.encode()))
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationFailed("Invalid OAuth state") from e
    if not isinstance(data, dict):
        raise ValidationFailed("Invalid OAuth state")
    return data


@dataclass
class BootstrapReport:
    tenant: list[Settled]
    customer: list[Settled]

    def as_dict(self) -> dict[str, Any]:
        return {
            "tenant": {s.name: s.ok for s in self.tenant},
            "customer": {s.name: s.ok for s in self.customer},
            "errors": {s.name: s.error for s in [*self.tenant, *self.customer] if not s.ok},
        }


class GoogleConnectService:
    """Builds the consent URL, completes the callback and bootstraps resources."""

    def __init__(
        self,
        db: AsyncSession,
        redis: aioredis.Redis,
        clients: GoogleClientFactory | None = None,
    ) -> None:
        self.db = db
        self.redis = redis
        self.clients = clients or GoogleClientFactory(db)

    async def _get_customer(self, tenant_id: UUID, customer_id: UUID) -> Customer:
        result = await self.db.execute(
            select(Customer).where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            raise NotFoundError("Customer not found")
        return customer

    # === Connect ===

    async def connect_url(
        self, ctx: TenantContext, customer_id: UUID, scopes: list[TokenScope] | None = None
    ) -> str:
        """Consent URL whose state is bound to a single-use Redis nonce."""
        await self._get_customer(ctx.tenant_id, customer_id)
        scopes = scopes or DEFAULT_SCOPES
        nonce = secrets.token_urlsafe(24)
        await self.redis.set(
            f"{STATE_KEY_PREFIX}{nonce}", str(customer_id), ex=settings.oauth_state_ttl_seconds
        )
        state = encode_state({
            "customerId": str(customer_id),
            "tenantId": str(ctx.tenant_id),
            "userId": ctx.user_id,
            "scopes": [s.value for s in scopes],
            "ts": int(time.time()),
            "nonce": nonce,
        })
        return oauth.build_auth_url(state, scopes)

    async def validate_state(self, state: str) -> dict[str, Any]:
        """Decode the state and consume its nonce.

        Raises:
            ValidationFailed: If the state is malformed, expired or replayed.
        """
        data = decode_state(state)
        nonce = data.get("nonce")
        ts = data.get("ts")
        if not nonce or not isinstance(ts, int):
            raise ValidationFailed("Invalid OAuth state")
        if time.time() - ts > settings.oauth_state_ttl_seconds:
            raise ValidationFailed("OAuth state expired, please reconnect")
        stored = await self.redis.getdel(f"{STATE_KEY_PREFIX}{nonce}")
        if stored is None or stored != data.get("customerId"):
            raise ValidationFailed("OAuth state expired or already used")
        return data

    async def complete(self, code: str, state: str) -> tuple[Customer, BootstrapReport]:
        """Handle the OAuth callback: store tokens, link the account, bootstrap."""
        data = await self.validate_state(state)
        tenant_id = UUID(data["tenantId"])
        customer = await self._get_customer(tenant_id, UUID(data["customerId"]))
        user_id = str(data["userId"])
        scopes = [TokenScope(s) for s in data.get("scopes", [])]

        token_set = await oauth.exchange_code(code)
        userinfo = await oauth.get_userinfo(token_set.access_token)
        await TokenService(self.db).save_tokens(tenant_id, user_id, token_set, scopes)

        customer.google_account_id = userinfo["id"] or None
        customer.google_email = userinfo["email"] or None
        customer.connected_by = user_id
        await self.db.commit()
        logger.info("Connected Google account %s to customer %s", userinfo["email"], customer.id)

        report = await self.bootstrap(tenant_id, customer, user_id, scopes)
        return customer, report

    # === Bootstrap ===

    async def bootstrap(
        self,
        tenant_id: UUID,
        customer: Customer,
        user_id: str | None = None,
        scopes: list[TokenScope] | None = None,
    ) -> BootstrapReport:
        """Idempotent discovery-or-create of every Google resource OneClickTag needs."""
        scopes = scopes or DEFAULT_SCOPES
        tenant = await self.db.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")

        gtm = await self._client(self.clients.gtm, tenant_id, user_id) if TokenScope.GTM in scopes else None
        ga4 = await self._client(self.clients.ga4, tenant_id, user_id) if TokenScope.GA4 in scopes else None
        ads = await self._client(self.clients.ads, tenant_id, user_id) if TokenScope.ADS in scopes else None

        # Tenant level
        tenant_tasks: dict[str, Awaitable[Any]] = {}
        if gtm is not None:
            tenant_tasks["gtm_account"] = self._discover_gtm_account(gtm, tenant.gtm_account_id)
        if ga4 is not None:
            tenant_tasks["ga4_property"] = self._shared_ga4_property(
                ga4, tenant.ga4_account_id, tenant.ga4_shared_property_id
            )
        tenant_results = await settle_all(tenant_tasks)
        for outcome in tenant_results:
            if not outcome.ok:
                continue
            if outcome.name == "gtm_account":
                tenant.gtm_account_id = outcome.value
            elif outcome.name == "ga4_property":
                tenant.ga4_account_id, tenant.ga4_shared_property_id = outcome.value
        await self.db.commit()

        # Customer level
        customer_tasks: dict[str, Awaitable[Any]] = {}
        account_id = customer.gtm_account_id or tenant.gtm_account_id
        if gtm is not None and account_id:
            customer_tasks["gtm_container"] = self._customer_container(gtm, account_id, customer.name)
        if ga4 is not None and tenant.ga4_shared_property_id and customer.website_url:
            customer_tasks["ga4_data_stream"] = ga4.get_or_create_web_data_stream(
                tenant.ga4_shared_property_id, customer.website_url, customer.name
            )
        if ads is not None:
            customer_tasks["ads_accounts"] = self._ads_accounts(ads)
        customer_results = await settle_all(customer_tasks)

        for outcome in customer_results:
            if not outcome.ok:
                continue
            if outcome.name == "gtm_container":
                self._apply_container(customer, account_id, outcome.value)
            elif outcome.name == "ga4_data_stream":
                await self._apply_data_stream(tenant, customer, outcome.value)
            elif outcome.name == "ads_accounts":
                await self._apply_ads_accounts(customer, outcome.value)
        await self.db.commit()

        report = BootstrapReport(tenant_results, customer_results)
        logger.info("Bootstrap for customer %s: %s", customer.id, report.as_dict())
        return report

    async def _client(self, factory: Any, tenant_id: UUID, user_id: str | None) -> Any:
        try:
            return await factory(tenant_id, user_id)
        except DomainError as e:
            logger.warning("Skipping bootstrap branch: %s", e)
            return None

    async def _discover_gtm_account(self, gtm: GTMClient, known: str | None) -> str:
        if known:
            return known
        accounts = await gtm.list_accounts()
        if not accounts:
            raise ValueError("No Google Tag Manager account available")
        return str(accounts[0]["accountId"])

    async def _shared_ga4_property(
        self, ga4: GA4AdminClient, account_id: str | None, property_id: str | None
    ) -> tuple[str, str]:
        if account_id and property_id:
            return account_id, property_id
        if not account_id:
            summaries = await ga4.list_account_summaries()
            if not summaries:
                raise ValueError("No Google Analytics account available")
            account_id = str(summaries[0]["account"]).split("/")[-1]
        return account_id, await ga4.get_or_create_property(account_id, SHARED_PROPERTY_NAME)

    async def _customer_container(
        self, gtm: GTMClient, account_id: str, customer_name: str
    ) -> dict[str, Any]:
        container = await gtm.get_or_create_container(account_id, f"OneClickTag - {customer_name}")
        ref = await gtm.get_or_create_workspace(account_id, str(container["containerId"]))
        essentials = await gtm.setup_workspace_essentials(ref)
        return {"container": container, "workspace_id": ref.workspace_id, "essentials": essentials}

    async def _ads_accounts(self, ads: GoogleAdsClient) -> list[dict[str, Any]]:
        """Accessible non-manager accounts with their OneClickTag label."""
        accounts: list[dict[str, Any]] = []
        for customer_id in await ads.list_accessible_customers():
            details = await ads.get_account_details(customer_id)
            if details.get("manager"):
                continue
            details["label_resource"] = await ads.get_or_create_label(customer_id)
            accounts.append(details)
        return accounts

    def _apply_container(self, customer: Customer, account_id: str, value: dict[str, Any]) -> None:
        container = value["container"]
        customer.gtm_account_id = account_id
        customer.gtm_container_id = str(container["containerId"])
        customer.gtm_container_name = container.get("name")
        customer.gtm_container_public_id = container.get("publicId")
        customer.gtm_workspace_id = value["workspace_id"]

    async def _apply_data_stream(
        self, tenant: Tenant, customer: Customer, stream: dict[str, str]
    ) -> None:
        property_id = tenant.ga4_shared_property_id or ""
        result = await self.db.execute(
            select(GA4Property).where(
                GA4Property.customer_id == customer.id, GA4Property.property_id == property_id
            )
        )
        prop = result.scalar_one_or_none()
        if prop is None:
            prop = GA4Property(
                tenant_id=tenant.id,
                customer_id=customer.id,
                property_id=property_id,
                property_name=SHARED_PROPERTY_NAME,
            )
            customer.ga4_properties.append(prop)
        prop.data_stream_id = stream["data_stream_id"]
        prop.measurement_id = stream["measurement_id"] or None
        prop.website_url = customer.website_url
        prop.is_active = True

    async def _apply_ads_accounts(self, customer: Customer, accounts: list[dict[str, Any]]) -> None:
        existing = {a.account_id: a for a in customer.google_ads_accounts}
        for details in accounts:
            account = existing.get(details["id"])
            if account is None:
                account = GoogleAdsAccount(
                    tenant_id=customer.tenant_id, customer_id=customer.id, account_id=details["id"]
                )
                customer.google_ads_accounts.append(account)
            account.account_name = details.get("name")
            account.currency = details.get("currency")
            account.time_zone = details.get("time_zone")
            account.label_resource = details.get("label_resource")
        await self.db.flush()
