"""Encrypted OAuth tokens per tenant, user and scope."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, enum_values


class TokenScope(str, enum.Enum):
    """Logical scope groups requested from Google."""

    GTM = "gtm"
    ADS = "ads"
    GA4 = "ga4"
    USERINFO = "userinfo"


class OAuthToken(Base):
    """Google OAuth credentials; access and refresh tokens are Fernet-encrypted."""

    __tablename__ = "oauth_tokens"
    __table_args__ = (UniqueConstraint("tenant_id", "user_id", "provider", "scope"),)

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(32), default="google", nullable=False)
    scope: Mapped[TokenScope] = mapped_column(
        Enum(TokenScope, name="token_scope", values_callable=enum_values),
        nullable=False,
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<OAuthToken {self.provider}:{self.scope.value} user={self.user_id}>"
