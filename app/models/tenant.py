"""Tenant model: one agency/organization using OneClickTag."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class Tenant(Base):
    """A tenant maps 1:1 to an organization in the auth provider.

    Holds the Google resources that are shared by all of the tenant's
    customers: the discovered GTM account and the shared "OneClickTag"
    GA4 property. Both are discovered once and safe to rediscover.
    """

    __tablename__ = "tenants"

    external_org_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Tenant-level Google resources
    gtm_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ga4_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ga4_shared_property_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<Tenant {self.external_org_id}>"
