"""Tracking recommendations produced by a site scan, and turning them into trackings."""

import logging
from collections import Counter
from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import TenantContext
from app.core.errors import DomainError, NotFoundError, PreconditionFailed
from app.models.customer import Customer
from app.models.recommendation import (
    SEVERITY_RANK,
    FunnelStage,
    RecommendationSeverity,
    RecommendationStatus,
    TrackingRecommendation,
)
from app.models.site_scan import ScanPage, SiteScan
from app.models.tracking import Destination, Tracking, TrackingType
from app.schemas.tracking import TrackingCreate
from app.services.job_queue import JobQueue
from app.services.tracking_service import TrackingService

logger = logging.getLogger(__name__)

# (points per recommendation, cap)
READINESS_WEIGHTS = {
    RecommendationSeverity.CRITICAL: (10, 40),
    RecommendationSeverity.IMPORTANT: (6, 30),
    RecommendationSeverity.RECOMMENDED: (4, 20),
    RecommendationSeverity.OPTIONAL: (2, 10),
}

PAGE_TYPE_SCORES = {
    "checkout": 1.0,
    "cart": 0.9,
    "pricing": 0.85,
    "contact": 0.8,
    "demo": 0.8,
    "signup": 0.8,
    "product": 0.7,
    "services": 0.6,
    "homepage": 0.5,
    "about": 0.3,
    "blog": 0.2,
    "faq": 0.2,
    "terms": 0.1,
    "other": 0.15,
}


# === Scoring (shared with scan finalize) ===


def severity_counts(recommendations: Iterable[TrackingRecommendation]) -> dict[str, int]:
    counts = Counter(r.severity for r in recommendations)
    return {severity.value.lower(): counts.get(severity, 0) for severity in RecommendationSeverity}


def readiness_score(counts: dict[str, int]) -> int:
    score = 0
    for severity, (points, cap) in READINESS_WEIGHTS.items():
        score += min(counts.get(severity.value.lower(), 0) * points, cap)
    return min(100, score)


def readiness_narrative(counts: dict[str, int], score: int) -> str:
    total = sum(counts.values())
    parts = []
    critical = counts.get("critical", 0)
    important = counts.get("important", 0)
    if critical:
        parts.append(f"{critical} critical conversion{'s' if critical > 1 else ''}")
    if important:
        parts.append(f"{important} important micro-conversion{'s' if important > 1 else ''}")
    parts.append(f"{total} total tracking opportunities")

    if score >= 80:
        assessment = "Excellent tracking potential."
    elif score >= 60:
        assessment = "Good tracking potential with room for improvement."
    elif score >= 40:
        assessment = "Moderate tracking potential. Consider adding more conversion points."
    else:
        assessment = (
            "Basic tracking setup. The site would benefit from more conversion-focused elements."
        )
    return f"Found {', '.join(parts)}. {assessment}"


def page_importance(page: ScanPage, page_recommendations: Iterable[TrackingRecommendation]) -> float:
    """0..1 score from page type, conversion elements, recommendations and depth."""
    score = PAGE_TYPE_SCORES.get(page.page_type or "other", 0.15)
    if page.has_form:
        score += 0.2
    if page.has_cta:
        score += 0.1
    if page.has_phone_link:
        score += 0.15
    if page.has_email_link:
        score += 0.1
    for rec in page_recommendations:
        if rec.severity == RecommendationSeverity.CRITICAL:
            score += 0.15
        elif rec.severity == RecommendationSeverity.IMPORTANT:
            score += 0.08
    score *= 1 - page.depth * 0.1
    return min(1.0, max(0.0, score))


# === Service ===


class RecommendationService:
    """Review and materialise a scan's recommendations."""

    def __init__(self, db: AsyncSession, job_queue: JobQueue | None = None) -> None:
        self.db = db
        self.job_queue = job_queue

    async def _customer(self, ctx: TenantContext, customer_id: UUID) -> Customer:
        result = await self.db.execute(
            select(Customer).where(Customer.id == customer_id, Customer.tenant_id == ctx.tenant_id)
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            raise NotFoundError("Customer not found")
        return customer

    async def _scan(self, ctx: TenantContext, customer_id: UUID, scan_id: UUID) -> SiteScan:
        await self._customer(ctx, customer_id)
        result = await self.db.execute(
            select(SiteScan).where(
                SiteScan.id == scan_id,
                SiteScan.customer_id == customer_id,
                SiteScan.tenant_id == ctx.tenant_id,
            )
        )
        scan = result.scalar_one_or_none()
        if scan is None:
            raise NotFoundError("Scan not found")
        return scan

    async def _recommendation(
        self, ctx: TenantContext, customer_id: UUID, scan_id: UUID, recommendation_id: UUID
    ) -> TrackingRecommendation:
        await self._scan(ctx, customer_id, scan_id)
        result = await self.db.execute(
            select(TrackingRecommendation).where(
                TrackingRecommendation.id == recommendation_id,
                TrackingRecommendation.scan_id == scan_id,
            )
        )
        recommendation = result.scalar_one_or_none()
        if recommendation is None:
            raise NotFoundError("Recommendation not found")
        return recommendation

    async def list_recommendations(
        self,
        ctx: TenantContext,
        customer_id: UUID,
        scan_id: UUID,
        severity: RecommendationSeverity | None = None,
        tracking_type: TrackingType | None = None,
        status: RecommendationStatus | None = None,
        funnel_stage: FunnelStage | None = None,
    ) -> list[TrackingRecommendation]:
        """Recommendations ordered CRITICAL first, then by creation."""
        await self._scan(ctx, customer_id, scan_id)
        conditions = [TrackingRecommendation.scan_id == scan_id]
        if severity:
            conditions.append(TrackingRecommendation.severity == severity)
        if tracking_type:
            conditions.append(TrackingRecommendation.tracking_type == tracking_type)
        if status:
            conditions.append(TrackingRecommendation.status == status)
        if funnel_stage:
            conditions.append(TrackingRecommendation.funnel_stage == funnel_stage)

        result = await self.db.execute(
            select(TrackingRecommendation)
            .where(*conditions)
            .order_by(TrackingRecommendation.created_at, TrackingRecommendation.id)
        )
        # Python sort is stable, so creation order survives within a severity
        return sorted(result.scalars().all(), key=lambda r: SEVERITY_RANK[r.severity])

    async def accept(
        self, ctx: TenantContext, customer_id: UUID, scan_id: UUID, recommendation_id: UUID
    ) -> TrackingRecommendation:
        rec = await self._recommendation(ctx, customer_id, scan_id, recommendation_id)
        if rec.status == RecommendationStatus.CREATED:
            raise PreconditionFailed("Recommendation already has a tracking")
        rec.status = RecommendationStatus.ACCEPTED
        await self.db.commit()
        return rec

    async def reject(
        self, ctx: TenantContext, customer_id: UUID, scan_id: UUID, recommendation_id: UUID
    ) -> TrackingRecommendation:
        rec = await self._recommendation(ctx, customer_id, scan_id, recommendation_id)
        if rec.status == RecommendationStatus.CREATED:
            raise PreconditionFailed("Recommendation already has a tracking")
        rec.status = RecommendationStatus.REJECTED
        await self.db.commit()
        return rec

    async def bulk_accept(
        self, ctx: TenantContext, customer_id: UUID, scan_id: UUID, recommendation_ids: list[UUID]
    ) -> dict[str, int]:
        """PENDING recommendations among ``recommendation_ids`` become ACCEPTED."""
        await self._scan(ctx, customer_id, scan_id)
        result = await self.db.execute(
            select(TrackingRecommendation).where(
                TrackingRecommendation.scan_id == scan_id,
                TrackingRecommendation.id.in_(recommendation_ids),
                TrackingRecommendation.status == RecommendationStatus.PENDING,
            )
        )
        recs = list(result.scalars().all())
        for rec in recs:
            rec.status = RecommendationStatus.ACCEPTED
        await self.db.commit()
        return {"accepted": len(recs)}

    async def bulk_create_trackings(
        self,
        ctx: TenantContext,
        customer_id: UUID,
        scan_id: UUID,
        recommendation_ids: list[UUID],
        destinations: list[Destination] | None = None,
    ) -> dict[str, Any]:
        """Create one tracking per recommendation, in order; failures are reported per item.

        The customer must exist and have Google connected, or nothing is
        attempted. Afterwards ``created + failed == total == len(recommendation_ids)``.
        """
        if self.job_queue is None:
            raise RuntimeError("bulk_create_trackings needs a job queue")
        customer = await self._customer(ctx, customer_id)
        if not customer.google_account_id:
            raise PreconditionFailed(
                "Customer must have a connected Google account before creating trackings"
            )
        await self._scan(ctx, customer_id, scan_id)

        result = await self.db.execute(
            select(TrackingRecommendation).where(
                TrackingRecommendation.scan_id == scan_id,
                TrackingRecommendation.id.in_(recommendation_ids),
            )
        )
        recs = {r.id: r for r in result.scalars().all()}
        tracking_service = TrackingService(self.db, self.job_queue)

        tracking_ids: list[UUID] = []
        errors: list[dict[str, Any]] = []
        for rec_id in recommendation_ids:
            rec = recs.get(rec_id)
            if rec is None:
                error: str | None = "Recommendation not found"
            else:
                error = await self._creation_blocker(customer_id, rec)
            if rec is not None and error is None:
                try:
                    tracking, _jobs = await tracking_service.create(
                        ctx, self._tracking_data(customer_id, rec, destinations)
                    )
                except DomainError as e:
                    error = e.message
                except Exception as e:
                    logger.error("Creating tracking from recommendation %s failed: %s", rec_id, e)
                    error = f"Failed to create tracking: {e}"
                else:
                    rec.status = RecommendationStatus.CREATED
                    rec.tracking_id = tracking.id
                    await self.db.commit()
                    tracking_ids.append(tracking.id)
                    continue
            errors.append({"recommendationId": str(rec_id), "error": error})

        logger.info(
            "Bulk create for scan %s: %d created, %d failed", scan_id, len(tracking_ids), len(errors)
        )
        return {
            "created": len(tracking_ids),
            "failed": len(errors),
            "trackingIds": tracking_ids,
            "errors": errors,
            "total": len(recommendation_ids),
        }

    async def _creation_blocker(self, customer_id: UUID, rec: TrackingRecommendation) -> str | None:
        if rec.status == RecommendationStatus.CREATED or rec.tracking_id is not None:
            return "Tracking already created for this recommendation"
        if rec.status == RecommendationStatus.REJECTED:
            return "Recommendation was rejected"
        if rec.selector:
            duplicate = await self.db.execute(
                select(Tracking.id).where(
                    Tracking.customer_id == customer_id,
                    Tracking.selector == rec.selector,
                    Tracking.type == rec.tracking_type,
                )
            )
            if duplicate.first() is not None:
                return f"A tracking with selector {rec.selector} already exists for this customer"
        return None

    @staticmethod
    def _tracking_data(
        customer_id: UUID, rec: TrackingRecommendation, destinations: list[Destination] | None
    ) -> TrackingCreate:
        chosen = destinations or [Destination(d) for d in rec.suggested_destinations] or [
            Destination.GA4
        ]
        return TrackingCreate(
            customer_id=customer_id,
            name=rec.name,
            description=rec.description,
            type=rec.tracking_type,
            destinations=chosen,
            selector=rec.selector,
            url_pattern=rec.url_pattern,
            config=dict(rec.suggested_config or {}),
            ga4_event_name=rec.suggested_ga4_event_name,
        )
