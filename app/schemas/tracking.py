"""Pydantic schemas for trackings and their sync state."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import Field, field_validator

from app.models.tracking import (
    Destination,
    HealthStatus,
    SyncState,
    TrackingStatus,
    TrackingType,
)
from app.schemas.common import BaseSchema

SortField = Literal["createdAt", "updatedAt", "name", "status", "type"]


class TrackingBase(BaseSchema):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    type: TrackingType
    destinations: list[Destination] = Field(..., min_length=1)
    selector: str | None = None
    url_pattern: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    ga4_event_name: str | None = Field(default=None, max_length=40, pattern=r"^[A-Za-z][A-Za-z0-9_]*$")
    ga4_parameters: dict[str, Any] = Field(default_factory=dict)
    ads_conversion_value: float | None = Field(default=None, ge=0)

    @field_validator("destinations")
    @classmethod
    def _dedupe_destinations(cls, value: list[Destination]) -> list[Destination]:
        return list(dict.fromkeys(value))


class TrackingCreate(TrackingBase):
    customer_id: UUID


class TrackingUpdate(BaseSchema):
    """Partial update; only provided fields are applied."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    destinations: list[Destination] | None = Field(default=None, min_length=1)
    selector: str | None = None
    url_pattern: str | None = None
    config: dict[str, Any] | None = None
    ga4_event_name: str | None = Field(default=None, max_length=40, pattern=r"^[A-Za-z][A-Za-z0-9_]*$")
    ga4_parameters: dict[str, Any] | None = None
    ads_conversion_value: float | None = Field(default=None, ge=0)
    status: Literal[TrackingStatus.ACTIVE, TrackingStatus.PAUSED] | None = None


class TrackingListParams(BaseSchema):
    customer_id: UUID | None = None
    status: TrackingStatus | None = None
    type: TrackingType | None = None
    search: str | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: SortField = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"


class TrackingResponse(BaseSchema):
    id: UUID
    customer_id: UUID
    name: str
    description: str | None
    type: TrackingType
    destinations: list[Destination]
    selector: str | None
    url_pattern: str | None
    config: dict[str, Any]
    ga4_event_name: str | None
    ga4_parameters: dict[str, Any]
    ads_conversion_value: float | None
    status: TrackingStatus
    gtm_trigger_id: str | None
    gtm_tag_id_ga4: str | None
    gtm_tag_id_ads: str | None
    gtm_container_id: str | None
    gtm_workspace_id: str | None
    conversion_action_id: str | None
    ads_conversion_label: str | None
    gtm_sync_state: SyncState
    ads_sync_state: SyncState
    health_status: HealthStatus
    last_health_check_at: datetime | None
    last_error: str | None
    sync_attempts: int
    last_sync_at: datetime | None
    created_at: datetime
    updated_at: datetime


class JobIds(BaseSchema):
    gtm_sync_job_id: str | None = None
    ads_sync_job_id: str | None = None


class TrackingMutationResponse(BaseSchema):
    """Create/update result: the row plus any sync jobs that were enqueued."""

    data: TrackingResponse
    jobs: JobIds
    resync_triggered: bool = False
    message: str


class TrackingDeleteResponse(BaseSchema):
    data: dict[str, Any]
    jobs: JobIds
    message: str


class GTMStatus(BaseSchema):
    trigger_id: str | None
    tag_id_ga4: str | None
    tag_id_ads: str | None
    container_id: str | None
    workspace_id: str | None
    synced: bool


class AdsStatus(BaseSchema):
    conversion_action_id: str | None
    conversion_label: str | None
    synced: bool


class HealthSummary(BaseSchema):
    is_healthy: bool
    needs_attention: bool
    status_label: str
    status_color: str
    health_status: HealthStatus
    last_checked_at: datetime | None


class TrackingStatusResponse(BaseSchema):
    tracking: TrackingResponse
    gtm: GTMStatus
    google_ads: AdsStatus
    jobs: dict[str, Any] | None = None
    health: HealthSummary


class HealthCheckResult(BaseSchema):
    tracking_id: UUID
    health_status: HealthStatus
    checked_at: datetime
    details: dict[str, Any]


class BatchSyncRequest(BaseSchema):
    tracking_ids: list[UUID] = Field(..., min_length=1, max_length=200)


class BatchSyncResponse(BaseSchema):
    batch_id: str
    queued: list[UUID]
    skipped: list[dict[str, str]]
    total_jobs: int
