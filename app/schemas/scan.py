"""Pydantic schemas for site scans."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import Field

from app.models.site_scan import SiteScanStatus
from app.schemas.common import BaseSchema


class ScanStartRequest(BaseSchema):
    website_url: str | None = Field(default=None, max_length=2048)
    max_pages: int | None = Field(default=None, ge=1, le=1000)
    max_depth: int | None = Field(default=None, ge=0, le=20)


class SiteLoginInput(BaseSchema):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    login_url: str | None = None


class ProcessChunkRequest(BaseSchema):
    phase: Literal["phase1", "phase2"]
    chunk_size: int | None = Field(default=None, ge=1, le=50)
    credentials: SiteLoginInput | None = None


class ConfirmNicheRequest(BaseSchema):
    niche: str = Field(..., min_length=1, max_length=64)


class ScanResponse(BaseSchema):
    id: UUID
    customer_id: UUID
    status: SiteScanStatus
    website_url: str
    max_pages: int
    max_depth: int
    total_urls_found: int
    total_pages_scanned: int
    authenticated_pages_count: int
    phase1_complete: bool
    phase2_complete: bool
    live_discovery: dict[str, Any]
    login_detected: bool
    login_url: str | None
    detected_niche: str | None
    niche_confidence: float | None
    niche_signals: list[dict[str, Any]]
    niche_sub_category: str | None
    confirmed_niche: str | None
    detected_technologies: list[dict[str, Any]]
    existing_tracking: list[dict[str, Any]]
    ai_analysis_used: bool
    total_recommendations: int
    recommendation_counts: dict[str, int]
    tracking_readiness_score: int | None
    readiness_narrative: str | None
    error_message: str | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ScanPageResponse(BaseSchema):
    id: UUID
    url: str
    title: str | None
    depth: int
    page_type: str
    template_group: str | None
    has_form: bool
    has_cta: bool
    has_video: bool
    has_phone_link: bool
    has_email_link: bool
    has_download_link: bool
    is_authenticated: bool
    importance_score: float | None


class ScanDetailResponse(BaseSchema):
    scan: ScanResponse
    pages: list[ScanPageResponse]
    recommendation_counts: dict[str, int]
    total_recommendations: int
