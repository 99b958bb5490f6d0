"""Pydantic schemas for scan recommendations."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from app.models.recommendation import FunnelStage, RecommendationSeverity, RecommendationStatus
from app.models.tracking import Destination, TrackingType
from app.schemas.common import BaseSchema


class RecommendationResponse(BaseSchema):
    id: UUID
    scan_id: UUID
    name: str
    description: str | None
    tracking_type: TrackingType
    severity: RecommendationSeverity
    severity_reason: str | None
    status: RecommendationStatus
    selector: str | None
    selector_config: dict[str, Any]
    selector_confidence: float | None
    url_pattern: str | None
    page_url: str | None
    funnel_stage: FunnelStage
    element_context: dict[str, Any]
    suggested_config: dict[str, Any]
    suggested_ga4_event_name: str | None
    suggested_destinations: list[str]
    ai_generated: bool
    tracking_id: UUID | None
    created_at: datetime


class RecommendationIds(BaseSchema):
    recommendation_ids: list[UUID] = Field(..., min_length=1, max_length=500)


class BulkCreateRequest(RecommendationIds):
    destinations: list[Destination] | None = Field(default=None, min_length=1)


class BulkCreateError(BaseSchema):
    recommendation_id: str
    error: str


class BulkCreateResponse(BaseSchema):
    created: int
    failed: int
    tracking_ids: list[UUID]
    errors: list[BulkCreateError]
    total: int
