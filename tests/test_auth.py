"""Tests for authentication and tenant resolution.

Covers:
- HTTP-level auth enforcement (missing token → 401)
- Unit tests for get_current_user and verify_token
- Unit tests for get_user_organization_id
- Tenant auto-provisioning in get_tenant_context
"""

import time
import uuid
from typing import Any
from unittest.mock import MagicMock, patch

import jwt as pyjwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import HTTPException
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user, verify_token
from app.core.deps import get_tenant_context, get_user_organization_id
from app.models.tenant import Tenant

# ---------------------------------------------------------------------------
# HTTP-level auth tests
# ---------------------------------------------------------------------------


class TestAuthEnforcementHTTP:
    """Protected endpoints reject unauthenticated requests."""

    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("GET", "/api/v1/trackings"),
            ("POST", "/api/v1/trackings"),
            ("GET", f"/api/v1/trackings/{uuid.uuid4()}"),
            ("POST", "/api/v1/trackings/batch-sync"),
            ("GET", f"/api/v1/customers/{uuid.uuid4()}/scans"),
            ("GET", f"/api/v1/customers/{uuid.uuid4()}/credentials"),
            ("GET", "/api/v1/jobs/gtm-sync/1"),
            ("GET", "/api/v1/google/connect"),
        ],
    )
    async def test_requires_auth(self, unauthed_client: AsyncClient, method: str, path: str) -> None:
        response = await unauthed_client.request(method, path)
        assert response.status_code == 401

    async def test_oauth_callback_needs_no_token(self, unauthed_client: AsyncClient) -> None:
        """The callback is reached by browser redirect and answers with a redirect."""
        response = await unauthed_client.get("/api/v1/google/callback", params={"error": "access_denied"})
        assert response.status_code in (302, 307)


# ---------------------------------------------------------------------------
# Unit tests for auth dependency functions
# ---------------------------------------------------------------------------


class TestGetCurrentUser:
    async def test_no_credentials_raises_401(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)
        assert exc_info.value.status_code == 401
        assert "Not authenticated" in exc_info.value.detail


def _signed(payload_overrides: dict[str, Any]) -> tuple[str, MagicMock]:
    """RS256 token plus a JWKS client mock that resolves its public key."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    payload = {
        "sub": "user-123",
        "email": "user@example.com",
        "activeOrganizationId": "org-456",
        "iat": int(time.time()),
        "exp": int(time.time()) + 3600,
        "iss": "http://localhost:3000",
        "aud": "http://localhost:3000",
        **payload_overrides,
    }
    token = pyjwt.encode(payload, private_key, algorithm="RS256")

    mock_signing_key = MagicMock()
    mock_signing_key.key = private_key.public_key()
    mock_jwks_client = MagicMock()
    mock_jwks_client.get_signing_key_from_jwt.return_value = mock_signing_key
    return token, mock_jwks_client


class TestVerifyToken:
    """Unit tests for verify_token (mocking JWKS)."""

    async def test_invalid_token_raises(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await verify_token("not-a-jwt-token")
        # 401 for a malformed token, 503 if the JWKS fetch fails first
        assert exc_info.value.status_code in (401, 503)

    async def test_expired_token_raises_401(self) -> None:
        token, jwks = _signed({"iat": int(time.time()) - 7200, "exp": int(time.time()) - 3600})
        with patch("app.core.auth.get_jwks_client", return_value=jwks):
            with pytest.raises(HTTPException) as exc_info:
                await verify_token(token)
        assert exc_info.value.status_code == 401
        assert "expired" in exc_info.value.detail.lower()

    async def test_valid_token_returns_payload(self) -> None:
        token, jwks = _signed({})
        with patch("app.core.auth.get_jwks_client", return_value=jwks):
            result = await verify_token(token)

        assert result["sub"] == "user-123"
        assert result["activeOrganizationId"] == "org-456"

    @pytest.mark.parametrize(
        "overrides",
        [{"aud": "http://wrong-audience.com"}, {"iss": "http://evil-issuer.com"}],
    )
    async def test_wrong_audience_or_issuer_raises_401(self, overrides: dict[str, Any]) -> None:
        token, jwks = _signed(overrides)
        with patch("app.core.auth.get_jwks_client", return_value=jwks):
            with pytest.raises(HTTPException) as exc_info:
                await verify_token(token)
        assert exc_info.value.status_code == 401


# ---------------------------------------------------------------------------
# Organization and tenant
# ---------------------------------------------------------------------------


class TestGetUserOrganizationId:
    def test_valid_org_id(self) -> None:
        assert get_user_organization_id({"activeOrganizationId": "org-123"}) == "org-123"

    @pytest.mark.parametrize("user", [{}, {"activeOrganizationId": None}, {"activeOrganizationId": ""}])
    def test_missing_org_id_raises_400(self, user: dict[str, Any]) -> None:
        with pytest.raises(HTTPException) as exc_info:
            get_user_organization_id(user)
        assert exc_info.value.status_code == 400
        assert "organization" in exc_info.value.detail.lower()

    def test_numeric_org_id_coerced_to_string(self) -> None:
        result = get_user_organization_id({"activeOrganizationId": 12345})
        assert result == "12345"


class TestTenantContext:
    async def test_first_request_provisions_tenant(self, db_session: AsyncSession) -> None:
        user = {"sub": "u1", "activeOrganizationId": "org-new", "activeOrganizationName": "New Agency"}

        first = await get_tenant_context(user, db_session)
        second = await get_tenant_context(user, db_session)

        assert first == second
        tenants = (await db_session.execute(select(Tenant))).scalars().all()
        assert [(t.external_org_id, t.name) for t in tenants] == [("org-new", "New Agency")]

    async def test_missing_subject_raises_401(self, db_session: AsyncSession) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_tenant_context({"activeOrganizationId": "org-1"}, db_session)
        assert exc_info.value.status_code == 401
