"""Stored site logins used by the crawler to get past login walls."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import TenantContext
from app.core.encryption import encrypt_token, try_decrypt_token
from app.core.errors import NotFoundError, ValidationFailed
from app.models.customer import Customer
from app.models.site_credential import SiteCredential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SiteLogin:
    """Decrypted credentials handed to the crawler."""

    username: str
    password: str
    login_url: str | None = None


def normalize_domain(value: str) -> str:
    """Bare lowercase hostname without ``www.``; accepts URLs or hostnames."""
    value = value.strip()
    if "://" not in value:
        value = f"https://{value}"
    hostname = (urlparse(value).hostname or "").lower()
    return hostname.removeprefix("www.")


class CredentialService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _customer(self, ctx: TenantContext, customer_id: UUID) -> Customer:
        result = await self.db.execute(
            select(Customer).where(Customer.id == customer_id, Customer.tenant_id == ctx.tenant_id)
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            raise NotFoundError("Customer not found")
        return customer

    async def save(
        self,
        ctx: TenantContext,
        customer_id: UUID,
        domain: str,
        username: str,
        password: str,
        login_url: str | None = None,
        commit: bool = True,
    ) -> SiteCredential:
        """Create or replace the login for a domain.

        With ``commit=False`` the row is only flushed; the caller commits.
        """
        await self._customer(ctx, customer_id)
        normalized = normalize_domain(domain)
        if not normalized:
            raise ValidationFailed("Invalid domain")

        result = await self.db.execute(
            select(SiteCredential).where(
                SiteCredential.tenant_id == ctx.tenant_id,
                SiteCredential.customer_id == customer_id,
                SiteCredential.domain == normalized,
            )
        )
        credential = result.scalar_one_or_none()
        if credential is None:
            credential = SiteCredential(
                tenant_id=ctx.tenant_id, customer_id=customer_id, domain=normalized
            )
            self.db.add(credential)
        credential.username = username
        credential.password = encrypt_token(password)
        credential.login_url = login_url
        if commit:
            await self.db.commit()
        else:
            await self.db.flush()
        logger.info("Saved site credential for %s (customer %s)", normalized, customer_id)
        return credential

    async def list_credentials(self, ctx: TenantContext, customer_id: UUID) -> list[SiteCredential]:
        await self._customer(ctx, customer_id)
        result = await self.db.execute(
            select(SiteCredential)
            .where(
                SiteCredential.tenant_id == ctx.tenant_id,
                SiteCredential.customer_id == customer_id,
            )
            .order_by(SiteCredential.domain)
        )
        return list(result.scalars().all())

    async def delete(self, ctx: TenantContext, customer_id: UUID, credential_id: UUID) -> None:
        result = await self.db.execute(
            select(SiteCredential).where(
                SiteCredential.id == credential_id,
                SiteCredential.tenant_id == ctx.tenant_id,
                SiteCredential.customer_id == customer_id,
            )
        )
        credential = result.scalar_one_or_none()
        if credential is None:
            raise NotFoundError("Credential not found")
        await self.db.delete(credential)
        await self.db.commit()

    async def get_for_domain(
        self, tenant_id: UUID, customer_id: UUID, domain: str
    ) -> SiteLogin | None:
        """Decrypted login for a domain, or None if none is stored or it cannot be decrypted."""
        result = await self.db.execute(
            select(SiteCredential).where(
                SiteCredential.tenant_id == tenant_id,
                SiteCredential.customer_id == customer_id,
                SiteCredential.domain == normalize_domain(domain),
            )
        )
        credential = result.scalar_one_or_none()
        if credential is None:
            return None
        password = try_decrypt_token(credential.password)
        if password is None:
            logger.warning("Stored credential for %s could not be decrypted", credential.domain)
            return None
        credential.last_used_at = datetime.now(UTC)
        return SiteLogin(credential.username, password, credential.login_url)
