"""Tracking model: one user-declared tracking intent and its sync state."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, enum_values


class TrackingType(str, enum.Enum):
    """Semantic event kinds a tracking can capture."""

    BUTTON_CLICK = "BUTTON_CLICK"
    LINK_CLICK = "LINK_CLICK"
    PAGE_VIEW = "PAGE_VIEW"
    ELEMENT_VISIBILITY = "ELEMENT_VISIBILITY"
    FORM_SUBMIT = "FORM_SUBMIT"
    FORM_START = "FORM_START"
    FORM_ABANDON = "FORM_ABANDON"
    ADD_TO_CART = "ADD_TO_CART"
    REMOVE_FROM_CART = "REMOVE_FROM_CART"
    ADD_TO_WISHLIST = "ADD_TO_WISHLIST"
    VIEW_CART = "VIEW_CART"
    CHECKOUT_START = "CHECKOUT_START"
    CHECKOUT_STEP = "CHECKOUT_STEP"
    PURCHASE = "PURCHASE"
    PRODUCT_VIEW = "PRODUCT_VIEW"
    PHONE_CALL_CLICK = "PHONE_CALL_CLICK"
    EMAIL_CLICK = "EMAIL_CLICK"
    DOWNLOAD = "DOWNLOAD"
    DEMO_REQUEST = "DEMO_REQUEST"
    SIGNUP = "SIGNUP"
    SCROLL_DEPTH = "SCROLL_DEPTH"
    TIME_ON_PAGE = "TIME_ON_PAGE"
    VIDEO_PLAY = "VIDEO_PLAY"
    VIDEO_COMPLETE = "VIDEO_COMPLETE"
    SITE_SEARCH = "SITE_SEARCH"
    FILTER_USE = "FILTER_USE"
    TAB_SWITCH = "TAB_SWITCH"
    ACCORDION_EXPAND = "ACCORDION_EXPAND"
    MODAL_OPEN = "MODAL_OPEN"
    SOCIAL_SHARE = "SOCIAL_SHARE"
    SOCIAL_CLICK = "SOCIAL_CLICK"
    PDF_DOWNLOAD = "PDF_DOWNLOAD"
    FILE_DOWNLOAD = "FILE_DOWNLOAD"
    NEWSLETTER_SIGNUP = "NEWSLETTER_SIGNUP"
    CUSTOM_EVENT = "CUSTOM_EVENT"


class TrackingStatus(str, enum.Enum):
    """Lifecycle status. CREATING and SYNCING are owned by the sync jobs."""

    PENDING = "PENDING"
    CREATING = "CREATING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    PAUSED = "PAUSED"
    SYNCING = "SYNCING"


class Destination(str, enum.Enum):
    """Where a tracking's events are sent."""

    GA4 = "GA4"
    GOOGLE_ADS = "GOOGLE_ADS"
    BOTH = "BOTH"


class SyncState(str, enum.Enum):
    """Outcome of one destination's sync job for the current sync round."""

    NOT_REQUIRED = "NOT_REQUIRED"
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class HealthStatus(str, enum.Enum):
    """Result of reconciling stored identifiers against GTM/Ads."""

    HEALTHY = "HEALTHY"
    MISSING_TRIGGER = "MISSING_TRIGGER"
    MISSING_TAG = "MISSING_TAG"
    MISSING_CONVERSION = "MISSING_CONVERSION"
    WORKSPACE_GONE = "WORKSPACE_GONE"
    UNCHECKED = "UNCHECKED"


IN_FLIGHT_STATUSES = frozenset({TrackingStatus.CREATING, TrackingStatus.SYNCING})


class Tracking(Base):
    """A tracking and the external identifiers created for it.

    Identifier columns (gtm_*, conversion_action_id, ads_*) are written only by
    sync job handlers once the row has left PENDING.
    """

    __tablename__ = "trackings"

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
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Declared intent
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[TrackingType] = mapped_column(
        Enum(TrackingType, name="tracking_type", values_callable=enum_values),
        nullable=False,
    )
    destinations: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    selector: Mapped[str | None] = mapped_column(Text, nullable=True)
    url_pattern: Mapped[str | None] = mapped_column(Text, nullable=True)
    config: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    ga4_event_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ga4_parameters: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    ads_conversion_value: Mapped[float | None] = mapped_column(Float, nullable=True)

    status: Mapped[TrackingStatus] = mapped_column(
        Enum(TrackingStatus, name="tracking_status", values_callable=enum_values),
        default=TrackingStatus.PENDING,
        nullable=False,
        index=True,
    )

    # GTM identifiers
    gtm_trigger_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gtm_tag_id_ga4: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gtm_tag_id_ads: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gtm_container_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gtm_workspace_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Google Ads identifiers
    ads_account_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    conversion_action_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ads_conversion_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ads_conversion_label: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Per-destination job bookkeeping for the current sync round
    gtm_sync_state: Mapped[SyncState] = mapped_column(
        Enum(SyncState, name="sync_state", values_callable=enum_values),
        default=SyncState.NOT_REQUIRED,
        nullable=False,
    )
    ads_sync_state: Mapped[SyncState] = mapped_column(
        Enum(SyncState, name="sync_state", values_callable=enum_values),
        default=SyncState.NOT_REQUIRED,
        nullable=False,
    )
    gtm_job_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ads_job_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Health / errors
    health_status: Mapped[HealthStatus] = mapped_column(
        Enum(HealthStatus, name="health_status", values_callable=enum_values),
        default=HealthStatus.UNCHECKED,
        nullable=False,
    )
    last_health_check_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    def __repr__(self) -> str:
        return f"<Tracking {self.name} [{self.status.value}]>"
