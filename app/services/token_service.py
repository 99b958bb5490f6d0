"""OAuth token store and per-tenant Google client construction."""

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.encryption import decrypt_token, encrypt_token
from app.core.errors import PreconditionFailed
from app.integrations.google import oauth
from app.integrations.google.ads import GoogleAdsClient
from app.integrations.google.ga4 import GA4AdminClient
from app.integrations.google.gtm import GTMClient
from app.models.oauth_token import OAuthToken, TokenScope

logger = logging.getLogger(__name__)

REFRESH_MARGIN = timedelta(minutes=5)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (SQLite) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class TokenService:
    """Persists and refreshes Google OAuth credentials."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def save_tokens(
        self,
        tenant_id: UUID,
        user_id: str,
        token_set: oauth.TokenSet,
        scopes: list[TokenScope],
    ) -> None:
        """Upsert one encrypted token row per granted scope group."""
        for scope in {TokenScope.USERINFO, *scopes}:
            result = await self.db.execute(
                select(OAuthToken).where(
                    OAuthToken.tenant_id == tenant_id,
                    OAuthToken.user_id == user_id,
                    OAuthToken.provider == "google",
                    OAuthToken.scope == scope,
                )
            )
            token = result.scalar_one_or_none()
            if token is None:
                token = OAuthToken(
                    tenant_id=tenant_id, user_id=user_id, provider="google", scope=scope
                )
                self.db.add(token)

            token.access_token = encrypt_token(token_set.access_token)
            if token_set.refresh_token:
                token.refresh_token = encrypt_token(token_set.refresh_token)
            token.expires_at = token_set.expires_at

        await self.db.flush()

    async def get_access_token(
        self, tenant_id: UUID, scope: TokenScope, user_id: str | None = None
    ) -> str:
        """Return a usable access token for ``scope``, refreshing it if needed.

        Prefers the token of ``user_id`` and falls back to any user of the
        tenant who connected that scope (jobs run without a session user).

        Raises:
            PreconditionFailed: If no Google account has granted the scope.
        """
        result = await self.db.execute(
            select(OAuthToken)
            .where(
                OAuthToken.tenant_id == tenant_id,
                OAuthToken.provider == "google",
                OAuthToken.scope == scope,
            )
            .order_by(OAuthToken.updated_at.desc())
        )
        tokens = list(result.scalars().all())
        if not tokens:
            raise PreconditionFailed(f"Google account not connected for {scope.value}")

        token = next((t for t in tokens if t.user_id == user_id), tokens[0])

        expires_at = as_utc(token.expires_at)
        if expires_at and expires_at - REFRESH_MARGIN <= datetime.now(UTC):
            if not token.refresh_token:
                raise PreconditionFailed("Google access expired; please reconnect")
            logger.info("Refreshing Google %s token for tenant %s", scope.value, tenant_id)
            refreshed = await oauth.refresh_access_token(decrypt_token(token.refresh_token))
            token.access_token = encrypt_token(refreshed.access_token)
            token.expires_at = refreshed.expires_at
            await self.db.flush()
            return refreshed.access_token

        return decrypt_token(token.access_token)


class GoogleClientFactory:
    """Builds authenticated Google API clients for a tenant.

    Injected into the sync, health and bootstrap services so tests can
    substitute fakes without patching module globals.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.tokens = TokenService(db)

    async def gtm(self, tenant_id: UUID, user_id: str | None = None) -> GTMClient:
        return GTMClient(await self.tokens.get_access_token(tenant_id, TokenScope.GTM, user_id))

    async def ga4(self, tenant_id: UUID, user_id: str | None = None) -> GA4AdminClient:
        return GA4AdminClient(
            await self.tokens.get_access_token(tenant_id, TokenScope.GA4, user_id)
        )

    async def ads(
        self,
        tenant_id: UUID,
        user_id: str | None = None,
        login_customer_id: str | None = None,
    ) -> GoogleAdsClient:
        token = await self.tokens.get_access_token(tenant_id, TokenScope.ADS, user_id)
        return GoogleAdsClient(token, login_customer_id=login_customer_id)
