"""Google OAuth 2.0 helpers: consent URL, code exchange, refresh, userinfo."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from app.core.config import settings
from app.models.oauth_token import TokenScope

AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
USERINFO_ENDPOINT = "https://www.googleapis.com/oauth2/v2/userinfo"

SCOPE_URLS: dict[TokenScope, list[str]] = {
    TokenScope.GTM: [
        "https://www.googleapis.com/auth/tagmanager.edit.containers",
        "https://www.googleapis.com/auth/tagmanager.manage.accounts",
        "https://www.googleapis.com/auth/tagmanager.edit.containerversions",
    ],
    TokenScope.ADS: ["https://www.googleapis.com/auth/adwords"],
    TokenScope.GA4: [
        "https://www.googleapis.com/auth/analytics.edit",
        "https://www.googleapis.com/auth/analytics.readonly",
    ],
    TokenScope.USERINFO: [
        "openid",
        "https://www.googleapis.com/auth/userinfo.email",
        "https://www.googleapis.com/auth/userinfo.profile",
    ],
}


@dataclass
class TokenSet:
    """Tokens returned by the token endpoint."""

    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    granted_scope: str = ""


def build_auth_url(state: str, scopes: list[TokenScope]) -> str:
    """Build the Google consent URL for the requested scope groups.

    ``prompt=consent`` plus offline access guarantees a refresh token even
    when the user has connected before.
    """
    requested = [TokenScope.USERINFO, *[s for s in scopes if s != TokenScope.USERINFO]]
    scope_urls = [url for scope in requested for url in SCOPE_URLS[scope]]
    params = urlencode({
        "client_id": settings.google_client_id,
        "redirect_uri": settings.google_redirect_uri,
        "response_type": "code",
        "scope": " ".join(scope_urls),
        "access_type": "offline",
        "include_granted_scopes": "true",
        "prompt": "consent",
        "state": state,
    })
    return f"{AUTH_ENDPOINT}?{params}"


def _token_set(data: dict[str, Any], refresh_token: str | None = None) -> TokenSet:
    expires_in = data.get("expires_in")
    expires_at = datetime.now(UTC) + timedelta(seconds=int(expires_in)) if expires_in else None
    return TokenSet(
        access_token=str(data["access_token"]),
        refresh_token=str(data.get("refresh_token") or refresh_token or "") or None,
        expires_at=expires_at,
        granted_scope=str(data.get("scope", "")),
    )


async def exchange_code(code: str) -> TokenSet:
    """Exchange an authorization code for tokens.

    Raises:
        httpx.HTTPStatusError: If the token exchange fails.
    """
    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.post(TOKEN_ENDPOINT, data={
            "code": code,
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "redirect_uri": settings.google_redirect_uri,
            "grant_type": "authorization_code",
        })
        response.raise_for_status()
        return _token_set(response.json())


async def refresh_access_token(refresh_token: str) -> TokenSet:
    """Use a refresh token to mint a new access token.

    Google omits refresh_token from refresh responses; the original one is kept.
    """
    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.post(TOKEN_ENDPOINT, data={
            "refresh_token": refresh_token,
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "grant_type": "refresh_token",
        })
        response.raise_for_status()
        return _token_set(response.json(), refresh_token=refresh_token)


async def get_userinfo(access_token: str) -> dict[str, str]:
    """Return the Google account id and email for an access token."""
    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.get(
            USERINFO_ENDPOINT, headers={"Authorization": f"Bearer {access_token}"}
        )
        response.raise_for_status()
        data = response.json()
        return {"id": str(data.get("id", "")), "email": str(data.get("email", ""))}
