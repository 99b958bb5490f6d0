"""Google account connection: consent URL and OAuth callback."""

import logging
from typing import Annotated
from urllib.parse import urlencode
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from app.core.config import settings
from app.core.deps import DBSession, RedisDep, TenantCtx, get_google_clients
from app.core.errors import DomainError, ValidationFailed
from app.core.rate_limit import OAUTH_CONNECT_LIMIT, limiter
from app.models.oauth_token import TokenScope
from app.schemas.common import DataResponse
from app.services.bootstrap_service import GoogleConnectService
from app.services.token_service import GoogleClientFactory

logger = logging.getLogger(__name__)

router = APIRouter()


def _frontend_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(f"{settings.frontend_url}/dashboard/customers?{urlencode(params)}")


def get_connect_service(
    db: DBSession,
    redis: RedisDep,
    clients: Annotated[GoogleClientFactory, Depends(get_google_clients)],
) -> GoogleConnectService:
    return GoogleConnectService(db, redis, clients)


ConnectService = Annotated[GoogleConnectService, Depends(get_connect_service)]


@router.get(
    "/connect",
    response_model=DataResponse[dict[str, str]],
    summary="Google consent URL for a customer",
)
@limiter.limit(OAUTH_CONNECT_LIMIT)
async def connect(
    request: Request,  # noqa: ARG001
    ctx: TenantCtx,
    service: ConnectService,
    customer_id: Annotated[UUID, Query(alias="customerId")],
    scopes: Annotated[str | None, Query(description="Comma-separated: gtm,ga4,ads")] = None,
) -> DataResponse[dict[str, str]]:
    requested: list[TokenScope] | None = None
    if scopes:
        try:
            requested = [TokenScope(s.strip().lower()) for s in scopes.split(",") if s.strip()]
        except ValueError as e:
            raise ValidationFailed(f"Unknown scope in: {scopes}") from e
    url = await service.connect_url(ctx, customer_id, requested)
    return DataResponse[dict[str, str]](data={"authUrl": url})


@router.get("/callback", summary="Google OAuth redirect target")
async def callback(
    service: ConnectService,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
) -> RedirectResponse:
    """Reached by browser redirect, so it carries no bearer token; the state nonce authenticates it."""
    if error or not code or not state:
        return _frontend_redirect(google="error", reason=error or "missing_code")

    try:
        customer, report = await service.complete(code, state)
    except DomainError as e:
        logger.warning("Google callback rejected: %s", e.message)
        return _frontend_redirect(google="error", reason=e.message)
    except httpx.HTTPError as e:
        logger.error("Google token exchange failed: %s", e)
        return _frontend_redirect(google="error", reason="token_exchange_failed")

    outcome = report.as_dict()
    return _frontend_redirect(
        google="connected",
        customerId=str(customer.id),
        bootstrap="partial" if outcome["errors"] else "ok",
    )
