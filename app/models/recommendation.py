"""Tracking recommendations produced by the phase 2 analysis."""

import enum
import uuid
from typing import Any

from sqlalchemy import Boolean, Enum, Float, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, enum_values
from app.models.tracking import TrackingType


class RecommendationSeverity(str, enum.Enum):
    CRITICAL = "CRITICAL"
    IMPORTANT = "IMPORTANT"
    RECOMMENDED = "RECOMMENDED"
    OPTIONAL = "OPTIONAL"


class RecommendationStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CREATED = "CREATED"


class FunnelStage(str, enum.Enum):
    TOP = "top"
    MIDDLE = "middle"
    BOTTOM = "bottom"


SEVERITY_RANK = {
    RecommendationSeverity.CRITICAL: 0,
    RecommendationSeverity.IMPORTANT: 1,
    RecommendationSeverity.RECOMMENDED: 2,
    RecommendationSeverity.OPTIONAL: 3,
}


class TrackingRecommendation(Base):
    """A suggested tracking, materialized into a Tracking once CREATED."""

    __tablename__ = "tracking_recommendations"

    scan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("site_scans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tracking_type: Mapped[TrackingType] = mapped_column(
        Enum(TrackingType, name="tracking_type", values_callable=enum_values),
        nullable=False,
    )
    severity: Mapped[RecommendationSeverity] = mapped_column(
        Enum(RecommendationSeverity, name="recommendation_severity", values_callable=enum_values),
        nullable=False,
        index=True,
    )
    severity_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[RecommendationStatus] = mapped_column(
        Enum(RecommendationStatus, name="recommendation_status", values_callable=enum_values),
        default=RecommendationStatus.PENDING,
        nullable=False,
        index=True,
    )

    selector: Mapped[str | None] = mapped_column(Text, nullable=True)
    selector_config: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    selector_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    url_pattern: Mapped[str | None] = mapped_column(Text, nullable=True)
    page_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    funnel_stage: Mapped[FunnelStage] = mapped_column(
        Enum(FunnelStage, name="funnel_stage", values_callable=enum_values),
        default=FunnelStage.MIDDLE,
        nullable=False,
    )
    element_context: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)

    suggested_config: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    suggested_ga4_event_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    suggested_destinations: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    ai_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    tracking_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("trackings.id", ondelete="SET NULL"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<TrackingRecommendation {self.name} [{self.severity.value}]>"
