"""Customer model: an end client of a tenant whose site gets tracked."""

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base

if TYPE_CHECKING:
    from app.models.ga4_property import GA4Property
    from app.models.google_ads_account import GoogleAdsAccount


class Customer(Base):
    """Customer with its linked Google account and discovered GTM handles.

    Google handles are filled in progressively: the account id/email on the
    OAuth callback, the GTM container/workspace during bootstrap or on the
    first GTM sync job.
    """

    __tablename__ = "customers"
    __table_args__ = (UniqueConstraint("tenant_id", "name"),)

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    website_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # Linked Google account (set by the OAuth callback)
    google_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    google_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    connected_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Discovered GTM resources
    gtm_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gtm_container_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gtm_container_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gtm_container_public_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    gtm_workspace_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Relationships
    ga4_properties: Mapped[list["GA4Property"]] = relationship(
        "GA4Property",
        back_populates="customer",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    google_ads_accounts: Mapped[list["GoogleAdsAccount"]] = relationship(
        "GoogleAdsAccount",
        back_populates="customer",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="GoogleAdsAccount.created_at",
    )

    @property
    def active_ga4_property(self) -> "GA4Property | None":
        """First active GA4 property with a measurement id."""
        for prop in self.ga4_properties:
            if prop.is_active and prop.measurement_id:
                return prop
        return None

    def __repr__(self) -> str:
        return f"<Customer {self.name}>"
