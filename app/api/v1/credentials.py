"""Stored site logins used by the crawler for authenticated pages."""

from uuid import UUID

from fastapi import APIRouter, status

from app.core.deps import DBSession, TenantCtx
from app.schemas.common import DataResponse
from app.schemas.credential import CredentialCreate, CredentialResponse
from app.services.credential_service import CredentialService

router = APIRouter()


@router.get("", response_model=DataResponse[list[CredentialResponse]], summary="List saved site logins")
async def list_credentials(
    customer_id: UUID, ctx: TenantCtx, db: DBSession
) -> DataResponse[list[CredentialResponse]]:
    credentials = await CredentialService(db).list_credentials(ctx, customer_id)
    data = [CredentialResponse.model_validate(c) for c in credentials]
    return DataResponse[list[CredentialResponse]](data=data)


@router.post(
    "",
    response_model=DataResponse[CredentialResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Save a site login",
    description="Replaces any login already stored for the same domain. The password is never returned.",
)
async def save_credential(
    customer_id: UUID, data: CredentialCreate, ctx: TenantCtx, db: DBSession
) -> DataResponse[CredentialResponse]:
    credential = await CredentialService(db).save(
        ctx, customer_id, data.domain, data.username, data.password, data.login_url
    )
    return DataResponse[CredentialResponse](data=CredentialResponse.model_validate(credential), message="Login saved")


@router.delete(
    "/{credential_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a site login",
)
async def delete_credential(customer_id: UUID, credential_id: UUID, ctx: TenantCtx, db: DBSession) -> None:
    await CredentialService(db).delete(ctx, customer_id, credential_id)
