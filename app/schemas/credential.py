"""Pydantic schemas for stored site credentials. Passwords are write-only."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from app.schemas.common import BaseSchema


class CredentialCreate(BaseSchema):
    domain: str = Field(..., min_length=1, max_length=255)
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)
    login_url: str | None = Field(default=None, max_length=2048)


class CredentialResponse(BaseSchema):
    id: UUID
    domain: str
    username: str
    login_url: str | None
    auto_registered: bool
    last_used_at: datetime | None
    created_at: datetime
