"""GA4 property/data stream linked to a customer."""

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base

if TYPE_CHECKING:
    from app.models.customer import Customer


class GA4Property(Base):
    """A GA4 web data stream used as the measurement target for GA4 tags."""

    __tablename__ = "ga4_properties"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    property_id: Mapped[str] = mapped_column(String(64), nullable=False)
    property_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    measurement_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    data_stream_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    website_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    customer: Mapped["Customer"] = relationship("Customer", back_populates="ga4_properties")

    def __repr__(self) -> str:
        return f"<GA4Property {self.property_id}:{self.measurement_id}>"
