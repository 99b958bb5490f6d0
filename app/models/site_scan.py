"""Site scan session and the pages crawled within it."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Enum, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, enum_values


class SiteScanStatus(str, enum.Enum):
    """Scan phases. COMPLETED, FAILED and CANCELLED are terminal."""

    QUEUED = "QUEUED"
    DISCOVERING = "DISCOVERING"
    CRAWLING = "CRAWLING"
    NICHE_DETECTED = "NICHE_DETECTED"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    DEEP_CRAWLING = "DEEP_CRAWLING"
    ANALYZING = "ANALYZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_SCAN_STATUSES = frozenset(
    {SiteScanStatus.COMPLETED, SiteScanStatus.FAILED, SiteScanStatus.CANCELLED}
)
ACTIVE_SCAN_STATUSES = frozenset(set(SiteScanStatus) - TERMINAL_SCAN_STATUSES)


class SiteScan(Base):
    """One crawl session for a customer's website.

    The crawl cursor (``url_queue``, ``crawled_urls`` and the per-phase
    counters) is persisted after every chunk so any client can resume the
    scan with another process-chunk call.
    """

    __tablename__ = "site_scans"

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
    status: Mapped[SiteScanStatus] = mapped_column(
        Enum(SiteScanStatus, name="site_scan_status", values_callable=enum_values),
        default=SiteScanStatus.QUEUED,
        nullable=False,
        index=True,
    )
    website_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    max_pages: Mapped[int] = mapped_column(Integer, default=200, nullable=False)
    max_depth: Mapped[int] = mapped_column(Integer, default=8, nullable=False)

    # Resumable cursor
    url_queue: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list, nullable=False)
    crawled_urls: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    phase1_pages_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    phase2_pages_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    phase1_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    phase2_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    session_cookies: Mapped[dict[str, str]] = mapped_column(JSONType, default=dict, nullable=False)

    # Accumulated phase 1 findings
    live_discovery: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    total_urls_found: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_pages_scanned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    authenticated_pages_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    login_detected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    login_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # Niche
    detected_niche: Mapped[str | None] = mapped_column(String(64), nullable=True)
    niche_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    niche_signals: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    niche_sub_category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    confirmed_niche: Mapped[str | None] = mapped_column(String(64), nullable=True)
    detected_technologies: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    existing_tracking: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    site_map: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    ai_analysis_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Finalize results
    total_recommendations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    recommendation_counts: Mapped[dict[str, int]] = mapped_column(
        JSONType, default=dict, nullable=False
    )
    tracking_readiness_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    readiness_narrative: Mapped[str | None] = mapped_column(Text, nullable=True)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SCAN_STATUSES

    def __repr__(self) -> str:
        return f"<SiteScan {self.website_url} [{self.status.value}]>"


class ScanPage(Base):
    """A crawled page. Written once in phase 1; phase 2 only sets importance."""

    __tablename__ = "scan_pages"
    __table_args__ = (UniqueConstraint("scan_id", "url"),)

    scan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("site_scans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    depth: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    page_type: Mapped[str] = mapped_column(String(32), default="other", nullable=False)
    template_group: Mapped[str | None] = mapped_column(String(512), nullable=True)

    has_form: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_cta: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_video: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_phone_link: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_email_link: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_download_link: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_authenticated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Null until analysed in phase 2; finalize computes the real score
    importance_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    meta_tags: Mapped[dict[str, str]] = mapped_column(JSONType, default=dict, nullable=False)
    headings: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list, nullable=False)
    content_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<ScanPage {self.url}>"
