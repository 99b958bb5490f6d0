"""Site scan orchestration: chunked crawl, niche detection, deep analysis and finalize.

Every call advances a persisted cursor on the ``SiteScan`` row, so a scan is
driven by repeated ``process_chunk`` calls from any client and survives
restarts between them.
"""

import logging
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Literal
from uuid import UUID

from bs4 import BeautifulSoup
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.deps import TenantContext
from app.core.errors import ConflictError, NotFoundError, PreconditionFailed, ValidationFailed
from app.models.customer import Customer
from app.models.recommendation import TrackingRecommendation
from app.models.site_scan import (
    ACTIVE_SCAN_STATUSES,
    ScanPage,
    SiteScan,
    SiteScanStatus,
)
from app.services.credential_service import CredentialService, SiteLogin
from app.services.realtime import RealtimeChannel, RealtimeEvent, scan_channel
from app.services.recommendation_service import (
    page_importance,
    readiness_narrative,
    readiness_score,
    severity_counts,
)
from app.services.scanner.crawler import (
    PageFetcher,
    base_domain,
    extract_interactive_elements,
    extract_priority_elements,
    hostname_of,
    make_soup,
    normalize_url,
    parse_page,
    should_skip_url,
    url_pattern_for,
)
from app.services.scanner.detector import (
    SITE_WIDE_PATTERN,
    Opportunity,
    behavioral_opportunities,
    dedup_key,
    detect_by_patterns,
    opportunity_key,
    page_view_opportunity,
)
from app.services.scanner.login import find_login_links, form_login, is_login_page
from app.services.scanner.niche import CrawlSummary, NicheDetector
from app.services.scanner.patterns import AVAILABLE_NICHES, normalize_niche, patterns_for_niche
from app.services.scanner.sitemap import SitemapParser
from app.services.scanner.technology import (
    detect_technologies,
    merge_technology_summary,
    technology_list,
)

logger = logging.getLogger(__name__)

ScanPhase = Literal["phase1", "phase2"]

S = SiteScanStatus
VALID_TRANSITIONS: dict[SiteScanStatus, frozenset[SiteScanStatus]] = {
    S.QUEUED: frozenset({S.DISCOVERING, S.CRAWLING, S.CANCELLED, S.FAILED}),
    S.DISCOVERING: frozenset({S.CRAWLING, S.CANCELLED, S.FAILED}),
    S.CRAWLING: frozenset({S.NICHE_DETECTED, S.AWAITING_CONFIRMATION, S.CANCELLED, S.FAILED}),
    S.NICHE_DETECTED: frozenset({S.AWAITING_CONFIRMATION, S.DEEP_CRAWLING, S.CANCELLED, S.FAILED}),
    S.AWAITING_CONFIRMATION: frozenset({S.DEEP_CRAWLING, S.CANCELLED, S.FAILED}),
    S.DEEP_CRAWLING: frozenset({S.ANALYZING, S.COMPLETED, S.CANCELLED, S.FAILED}),
    S.ANALYZING: frozenset({S.COMPLETED, S.CANCELLED, S.FAILED}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}

TECHNOLOGY_SAMPLE_PAGES = 3
MAX_URL_PATTERNS = 30
DISCOVERY_LIST_LIMIT = 50
SCAN_LIST_LIMIT = 20


def transition(scan: SiteScan, target: SiteScanStatus) -> None:
    """Move ``scan`` to ``target`` or raise ConflictError for an edge the state machine lacks."""
    if target not in VALID_TRANSITIONS[scan.status]:
        raise ConflictError(f"Invalid scan transition {scan.status.value} -> {target.value}")
    logger.debug("Scan %s: %s -> %s", scan.id, scan.status.value, target.value)
    scan.status = target


def empty_discovery(sitemap_found: bool, robots_found: bool, total_urls: int) -> dict[str, Any]:
    return {
        "sitemapFound": sitemap_found,
        "robotsFound": robots_found,
        "totalUrlsDiscovered": total_urls,
        "pageTypes": {},
        "urlPatterns": [],
        "technologies": {},
        "existingTracking": [],
        "forms": [],
        "ctas": [],
        "videoEmbeds": [],
        "phoneLinks": [],
        "emailLinks": [],
        "loginPages": [],
        "cartPages": [],
        "checkoutPages": [],
    }


def _with_scheme(url: str) -> str:
    url = url.strip()
    return url if "://" in url else f"https://{url}"


def recommendation_from(scan_id: UUID, opp: Opportunity) -> TrackingRecommendation:
    return TrackingRecommendation(
        scan_id=scan_id,
        name=opp.name,
        description=opp.description,
        tracking_type=opp.tracking_type,
        severity=opp.severity,
        severity_reason=opp.severity_reason,
        selector=opp.selector,
        selector_config=opp.selector_config or {},
        selector_confidence=opp.selector_confidence,
        url_pattern=opp.url_pattern,
        page_url=opp.page_url,
        funnel_stage=opp.funnel_stage,
        element_context=opp.element_context or {},
        suggested_config=opp.suggested_config,
        suggested_ga4_event_name=opp.ga4_event_name,
        suggested_destinations=[d.value for d in opp.suggested_destinations],
        ai_generated=False,
    )


class ScanService:
    """Drives a SiteScan through its phases.

    Network collaborators are factories so tests can route them through an
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        db: AsyncSession,
        realtime: RealtimeChannel | None = None,
        fetcher_factory: Callable[..., PageFetcher] = PageFetcher,
        sitemap_parser_factory: Callable[[], SitemapParser] = SitemapParser,
        niche_detector: NicheDetector | None = None,
    ) -> None:
        self.db = db
        self.realtime = realtime
        self.fetcher_factory = fetcher_factory
        self.sitemap_parser_factory = sitemap_parser_factory
        self.niche_detector = niche_detector or NicheDetector()

    # === Lookups ===

    async def _customer(self, ctx: TenantContext, customer_id: UUID) -> Customer:
        result = await self.db.execute(
            select(Customer).where(Customer.id == customer_id, Customer.tenant_id == ctx.tenant_id)
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            raise NotFoundError("Customer not found")
        return customer

    async def _scan(self, ctx: TenantContext, customer_id: UUID, scan_id: UUID) -> SiteScan:
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

    async def _pages(self, scan_id: UUID) -> list[ScanPage]:
        result = await self.db.execute(
            select(ScanPage).where(ScanPage.scan_id == scan_id).order_by(ScanPage.depth, ScanPage.created_at)
        )
        return list(result.scalars().all())

    async def _recommendations(self, scan_id: UUID) -> list[TrackingRecommendation]:
        result = await self.db.execute(
            select(TrackingRecommendation).where(TrackingRecommendation.scan_id == scan_id)
        )
        return list(result.scalars().all())

    async def get(self, ctx: TenantContext, customer_id: UUID, scan_id: UUID) -> dict[str, Any]:
        """Scan with its pages (most important first) and recommendation counts."""
        scan = await self._scan(ctx, customer_id, scan_id)
        pages = await self._pages(scan.id)
        pages.sort(key=lambda p: p.importance_score or 0.0, reverse=True)
        recs = await self._recommendations(scan.id)
        return {
            "scan": scan,
            "pages": pages,
            "recommendation_counts": severity_counts(recs),
            "total_recommendations": len(recs),
        }

    async def list_scans(self, ctx: TenantContext, customer_id: UUID) -> list[SiteScan]:
        await self._customer(ctx, customer_id)
        result = await self.db.execute(
            select(SiteScan)
            .where(SiteScan.customer_id == customer_id, SiteScan.tenant_id == ctx.tenant_id)
            .order_by(SiteScan.created_at.desc())
            .limit(SCAN_LIST_LIMIT)
        )
        return list(result.scalars().all())

    # === Start ===

    async def start(
        self,
        ctx: TenantContext,
        customer_id: UUID,
        website_url: str | None = None,
        max_pages: int | None = None,
        max_depth: int | None = None,
    ) -> SiteScan:
        """Create a scan, pre-crawl robots.txt and sitemaps, and seed the URL queue.

        Raises:
            NotFoundError: Customer not in tenant.
            ValidationFailed: No URL given and the customer has none.
            ConflictError: The customer already has an active scan.
        """
        customer = await self._customer(ctx, customer_id)
        raw_url = website_url or customer.website_url
        if not raw_url:
            raise ValidationFailed("No website URL provided and customer has no website")
        home = normalize_url(_with_scheme(raw_url))
        if home is None:
            raise ValidationFailed(f"Invalid website URL: {raw_url}")

        active = await self.db.execute(
            select(SiteScan.id).where(
                SiteScan.customer_id == customer.id,
                SiteScan.status.in_(ACTIVE_SCAN_STATUSES),
            )
        )
        if active.first() is not None:
            raise ConflictError("A scan is already in progress for this customer")

        scan = SiteScan(
            tenant_id=ctx.tenant_id,
            customer_id=customer.id,
            website_url=home,
            max_pages=max_pages or settings.scan_default_max_pages,
            max_depth=max_depth if max_depth is not None else settings.scan_default_max_depth,
            status=SiteScanStatus.QUEUED,
        )
        self.db.add(scan)
        await self.db.flush()
        transition(scan, SiteScanStatus.DISCOVERING)

        parser = self.sitemap_parser_factory()
        try:
            pre_crawl = await parser.discover(hostname_of(home))
        finally:
            await parser.aclose()

        site = base_domain(hostname_of(home))
        queue: list[dict[str, Any]] = [{"url": home, "depth": 0, "source": "homepage"}]
        seen = {home}
        for raw in pre_crawl.urls:
            if len(queue) >= scan.max_pages:
                break
            url = normalize_url(raw)
            if url is None or url in seen or should_skip_url(url):
                continue
            if base_domain(hostname_of(url)) != site:
                continue
            seen.add(url)
            queue.append({"url": url, "depth": 1, "source": "sitemap"})

        scan.url_queue = queue
        scan.crawled_urls = []
        scan.total_urls_found = len(queue)
        scan.live_discovery = empty_discovery(
            pre_crawl.sitemap_found, pre_crawl.robots_found, len(queue)
        )
        transition(scan, SiteScanStatus.CRAWLING)
        await self.db.commit()

        logger.info(
            "Started scan %s for %s with %d seeded URL(s) (sitemap=%s, robots=%s)",
            scan.id,
            home,
            len(queue),
            pre_crawl.sitemap_found,
            pre_crawl.robots_found,
        )
        return scan

    # === Chunks ===

    async def process_chunk(
        self,
        ctx: TenantContext,
        customer_id: UUID,
        scan_id: UUID,
        phase: ScanPhase,
        chunk_size: int | None = None,
        credentials: SiteLogin | None = None,
    ) -> dict[str, Any]:
        """Advance one phase by at most ``chunk_size`` pages.

        Once a phase reports ``hasMore: false`` further calls for it return
        the same totals without doing any work.
        """
        scan = await self._scan(ctx, customer_id, scan_id)
        if scan.is_terminal:
            raise ConflictError(f"Scan is {scan.status.value.lower()}")

        if phase == "phase1":
            if scan.phase1_complete:
                return {
                    "pagesProcessed": scan.phase1_pages_processed,
                    "chunkPagesProcessed": 0,
                    "hasMore": False,
                    "discovery": scan.live_discovery,
                    "newPages": [],
                }
            if scan.status not in (SiteScanStatus.CRAWLING, SiteScanStatus.DISCOVERING):
                raise ConflictError(f"Cannot run phase 1 while scan is {scan.status.value}")
            if scan.status == SiteScanStatus.DISCOVERING:
                transition(scan, SiteScanStatus.CRAWLING)
            result = await self._phase1(ctx, scan, chunk_size or settings.scan_phase1_chunk_size, credentials)
        else:
            if scan.phase2_complete:
                return {
                    "pagesProcessed": scan.phase2_pages_processed,
                    "chunkPagesProcessed": 0,
                    "hasMore": False,
                    "newRecommendations": 0,
                }
            if scan.status != SiteScanStatus.DEEP_CRAWLING or not scan.confirmed_niche:
                raise ConflictError(
                    f"Cannot run phase 2 while scan is {scan.status.value}; confirm the niche first"
                )
            result = await self._phase2(scan, chunk_size or settings.scan_phase2_chunk_size)

        await self._publish(
            scan,
            RealtimeEvent.SCAN_PROGRESS,
            {
                "scanId": str(scan.id),
                "phase": phase,
                "status": scan.status.value,
                "pagesProcessed": result["pagesProcessed"],
                "hasMore": result["hasMore"],
            },
        )
        return result

    async def _phase1(
        self,
        ctx: TenantContext,
        scan: SiteScan,
        chunk_size: int,
        credentials: SiteLogin | None,
    ) -> dict[str, Any]:
        queue = list(scan.url_queue)
        crawled = list(scan.crawled_urls)
        crawled_set = set(crawled)
        queued_set = {item["url"] for item in queue}
        discovery = dict(scan.live_discovery)
        site = base_domain(hostname_of(scan.website_url))

        new_pages: list[dict[str, Any]] = []
        processed = 0
        auth_result: dict[str, Any] | None = None
        login_attempted = False

        async with self.fetcher_factory(cookies=scan.session_cookies or None) as fetcher:
            while queue and processed < chunk_size and len(crawled) < scan.max_pages:
                item = queue.pop(0)
                url, depth = item["url"], int(item["depth"])
                queued_set.discard(url)
                if url in crawled_set or depth > scan.max_depth or should_skip_url(url):
                    continue
                crawled.append(url)
                crawled_set.add(url)
                processed += 1

                fetched = await fetcher.fetch(url)
                if fetched is None:
                    continue
                soup = make_soup(fetched.html)
                parsed = parse_page(url, fetched.html, depth, soup)

                if not scan.login_detected:
                    login_url = url if is_login_page(url, soup) else None
                    if login_url is None:
                        login_url = next(iter(find_login_links(parsed.anchors, url)), None)
                    if login_url:
                        scan.login_detected = True
                        scan.login_url = login_url
                        await self._publish(
                            scan,
                            RealtimeEvent.LOGIN_DETECTED,
                            {"scanId": str(scan.id), "loginUrl": login_url},
                        )

                if scan.login_detected and not scan.session_cookies and not login_attempted:
                    login = credentials or await CredentialService(self.db).get_for_domain(
                        scan.tenant_id, scan.customer_id, hostname_of(scan.website_url)
                    )
                    if login is not None:
                        login_attempted = True
                        outcome = await form_login(
                            fetcher.client,
                            login.login_url or scan.login_url or url,
                            login.username,
                            login.password,
                        )
                        auth_result = outcome.as_dict()
                        if outcome.success:
                            scan.session_cookies = outcome.cookies
                            if credentials is not None:
                                await CredentialService(self.db).save(
                                    ctx,
                                    scan.customer_id,
                                    hostname_of(scan.website_url),
                                    credentials.username,
                                    credentials.password,
                                    outcome.login_url,
                                    commit=False,
                                )

                authenticated = bool(scan.session_cookies)
                page = ScanPage(
                    scan_id=scan.id,
                    url=url,
                    title=(parsed.title or "")[:512] or None,
                    depth=depth,
                    page_type=parsed.page_type,
                    template_group=parsed.template_group,
                    has_form=parsed.has_form,
                    has_cta=parsed.has_cta,
                    has_video=parsed.has_video,
                    has_phone_link=parsed.has_phone_link,
                    has_email_link=parsed.has_email_link,
                    has_download_link=parsed.has_download_link,
                    is_authenticated=authenticated,
                    meta_tags=parsed.meta_tags,
                    headings=parsed.headings,
                    content_summary=parsed.content_summary,
                )
                self.db.add(page)

                if scan.total_pages_scanned < TECHNOLOGY_SAMPLE_PAGES:
                    report = detect_technologies(fetched.html, fetched.headers)
                    discovery["technologies"] = merge_technology_summary(
                        discovery.get("technologies") or {}, report.summary()
                    )
                    known = {t["provider"] for t in discovery.get("existingTracking") or []}
                    discovery["existingTracking"] = list(discovery.get("existingTracking") or []) + [
                        t for t in report.tracking_dicts() if t["provider"] not in known
                    ]
                discovery = self._record_findings(discovery, parsed.page_type, url, soup)

                scan.total_pages_scanned += 1
                if authenticated:
                    scan.authenticated_pages_count += 1
                new_pages.append(
                    {
                        "url": url,
                        "title": page.title,
                        "pageType": parsed.page_type,
                        "depth": depth,
                        "isAuthenticated": authenticated,
                    }
                )

                if depth < scan.max_depth:
                    for link in parsed.links:
                        if len(queue) >= scan.max_pages:
                            break
                        if link in crawled_set or link in queued_set:
                            continue
                        if base_domain(hostname_of(link)) != site:
                            continue
                        queue.append({"url": link, "depth": depth + 1, "source": "link"})
                        queued_set.add(link)

            if scan.session_cookies:
                scan.session_cookies = fetcher.cookies or scan.session_cookies

        has_more = bool(queue) and len(crawled) < scan.max_pages
        scan.url_queue = queue
        scan.crawled_urls = crawled
        scan.phase1_pages_processed = len(crawled)
        scan.phase1_complete = not has_more
        scan.total_urls_found = max(scan.total_urls_found, len(crawled) + len(queue))
        discovery["totalUrlsDiscovered"] = scan.total_urls_found
        scan.live_discovery = discovery
        await self.db.commit()

        logger.info(
            "Scan %s phase 1: %d page(s) this chunk, %d total, has_more=%s",
            scan.id,
            processed,
            len(crawled),
            has_more,
        )
        result: dict[str, Any] = {
            "pagesProcessed": scan.phase1_pages_processed,
            "chunkPagesProcessed": processed,
            "hasMore": has_more,
            "discovery": discovery,
            "newPages": new_pages,
        }
        if scan.login_detected:
            result["loginDetected"] = scan.login_detected
            result["loginUrl"] = scan.login_url
        if auth_result is not None:
            result["authResult"] = auth_result
        return result

    @staticmethod
    def _record_findings(
        discovery: dict[str, Any], page_type: str, url: str, soup: BeautifulSoup
    ) -> dict[str, Any]:
        """Fold one page's structural findings into the live discovery."""
        updated = dict(discovery)
        page_types = dict(updated.get("pageTypes") or {})
        page_types[page_type] = page_types.get(page_type, 0) + 1
        updated["pageTypes"] = page_types

        patterns = list(updated.get("urlPatterns") or [])
        pattern = url_pattern_for(url)
        if pattern not in patterns and len(patterns) < MAX_URL_PATTERNS:
            patterns.append(pattern)
        updated["urlPatterns"] = patterns

        for key, found in extract_priority_elements(url, soup).items():
            current = list(updated.get(key) or [])
            updated[key] = (current + found)[:DISCOVERY_LIST_LIMIT]

        page_list = {"login": "loginPages", "cart": "cartPages", "checkout": "checkoutPages"}.get(
            page_type
        )
        if page_list:
            urls = list(updated.get(page_list) or [])
            if url not in urls and len(urls) < DISCOVERY_LIST_LIMIT:
                urls.append(url)
            updated[page_list] = urls
        return updated

    async def _phase2(self, scan: SiteScan, chunk_size: int) -> dict[str, Any]:
        niche = scan.confirmed_niche
        result = await self.db.execute(
            select(ScanPage)
            .where(ScanPage.scan_id == scan.id, ScanPage.importance_score.is_(None))
            .order_by(ScanPage.depth, ScanPage.created_at, ScanPage.id)
        )
        pending = list(result.scalars().all())

        represented = await self.db.execute(
            select(ScanPage.template_group)
            .where(
                ScanPage.scan_id == scan.id,
                ScanPage.importance_score.is_not(None),
                ScanPage.template_group.is_not(None),
            )
            .distinct()
        )
        seen_groups = set(represented.scalars().all())

        batch: list[ScanPage] = []
        for page in pending:
            if len(batch) >= chunk_size:
                break
            if page.template_group and page.template_group in seen_groups:
                # Same template as an analysed page
                page.importance_score = 0.0
                continue
            if page.template_group:
                seen_groups.add(page.template_group)
            batch.append(page)

        existing_keys = {
            dedup_key(
                r.tracking_type.value,
                r.name,
                r.page_url,
                r.selector,
                r.url_pattern,
                behavioral=r.url_pattern == SITE_WIDE_PATTERN,
            )
            for r in await self._recommendations(scan.id)
        }
        opportunities: list[Opportunity] = []
        patterns = patterns_for_niche(niche)

        async with self.fetcher_factory(cookies=scan.session_cookies or None) as fetcher:
            for page in batch:
                fetched = await fetcher.fetch(page.url)
                if fetched is not None:
                    soup = make_soup(fetched.html)
                    parsed = parse_page(page.url, fetched.html, page.depth, soup)
                    elements = extract_interactive_elements(soup)
                    opportunities.extend(detect_by_patterns(parsed, elements, patterns))
                view = page_view_opportunity(page.url, page.page_type)
                if view is not None:
                    opportunities.append(view)
                page.importance_score = 0.0

        opportunities.extend(behavioral_opportunities(niche, scan.website_url))

        new_count = 0
        for opp in opportunities:
            key = opportunity_key(opp)
            if key in existing_keys:
                continue
            existing_keys.add(key)
            self.db.add(recommendation_from(scan.id, opp))
            new_count += 1

        remaining = (
            await self.db.execute(
                select(func.count(ScanPage.id)).where(
                    ScanPage.scan_id == scan.id, ScanPage.importance_score.is_(None)
                )
            )
        ).scalar_one()
        has_more = remaining > 0
        scan.phase2_pages_processed += len(batch)
        scan.phase2_complete = not has_more
        await self.db.commit()

        logger.info(
            "Scan %s phase 2: analysed %d page(s), %d new recommendation(s), has_more=%s",
            scan.id,
            len(batch),
            new_count,
            has_more,
        )
        return {
            "pagesProcessed": scan.phase2_pages_processed,
            "chunkPagesProcessed": len(batch),
            "hasMore": has_more,
            "newRecommendations": new_count,
        }

    # === Niche ===

    def _niche_result(self, scan: SiteScan, reasoning: str | None = None) -> dict[str, Any]:
        return {
            "niche": scan.detected_niche,
            "confidence": scan.niche_confidence,
            "subCategory": scan.niche_sub_category,
            "signals": scan.niche_signals,
            "reasoning": reasoning,
            "aiUsed": scan.ai_analysis_used,
            "technologies": scan.detected_technologies,
            "existingTracking": scan.existing_tracking,
            "status": scan.status.value,
        }

    async def detect_niche(
        self, ctx: TenantContext, customer_id: UUID, scan_id: UUID
    ) -> dict[str, Any]:
        """Classify the site once phase 1 is done; later calls return the stored niche."""
        scan = await self._scan(ctx, customer_id, scan_id)
        if scan.detected_niche:
            return self._niche_result(scan)
        if scan.status not in (SiteScanStatus.CRAWLING, SiteScanStatus.DISCOVERING):
            raise PreconditionFailed(f"Cannot detect niche in status: {scan.status.value}")
        if not scan.phase1_complete:
            raise PreconditionFailed("Phase 1 crawl is not complete")

        pages = await self._pages(scan.id)
        summary = self._crawl_summary(scan, pages)
        analysis = await self.niche_detector.detect(summary)

        if scan.status == SiteScanStatus.DISCOVERING:
            transition(scan, SiteScanStatus.CRAWLING)
        scan.detected_niche = analysis.niche
        scan.niche_confidence = analysis.confidence
        scan.niche_signals = analysis.signal_dicts()
        scan.niche_sub_category = analysis.sub_category
        scan.ai_analysis_used = analysis.ai_used
        scan.detected_technologies = summary.technologies
        scan.existing_tracking = summary.existing_tracking
        scan.site_map = {
            "totalPages": len(pages),
            "pageTypes": summary.page_types,
            "templateGroups": dict(Counter(p.template_group for p in pages if p.template_group)),
            "depthDistribution": {str(d): n for d, n in sorted(Counter(p.depth for p in pages).items())},
        }
        transition(scan, SiteScanStatus.NICHE_DETECTED)
        transition(scan, SiteScanStatus.AWAITING_CONFIRMATION)
        await self.db.commit()

        logger.info(
            "Scan %s niche %s (confidence %.2f, ai=%s)",
            scan.id,
            analysis.niche,
            analysis.confidence,
            analysis.ai_used,
        )
        return self._niche_result(scan, analysis.reasoning)

    @staticmethod
    def _crawl_summary(scan: SiteScan, pages: list[ScanPage]) -> CrawlSummary:
        discovery = scan.live_discovery or {}
        home = next((p for p in pages if p.depth == 0), pages[0] if pages else None)
        page_types = dict(discovery.get("pageTypes") or Counter(p.page_type for p in pages))
        all_content = " ".join(
            f"{p.title or ''} {(p.content_summary or '')[:200]}" for p in pages[:50]
        )
        return CrawlSummary(
            website_url=scan.website_url,
            total_pages=len(pages),
            page_types=page_types,
            url_patterns=list(discovery.get("urlPatterns") or [])[:MAX_URL_PATTERNS],
            title=home.title if home else None,
            meta_description=(home.meta_tags or {}).get("description") if home else None,
            headings=list(home.headings or []) if home else [],
            key_content=(home.content_summary or "") if home else "",
            all_page_content=all_content[:5000],
            technologies=technology_list(discovery.get("technologies") or {}),
            existing_tracking=list(discovery.get("existingTracking") or []),
        )

    async def confirm_niche(
        self, ctx: TenantContext, customer_id: UUID, scan_id: UUID, niche: str
    ) -> SiteScan:
        niche = normalize_niche(niche) or ""
        if niche not in AVAILABLE_NICHES:
            raise ValidationFailed(f"Invalid niche. Must be one of: {', '.join(AVAILABLE_NICHES)}")
        scan = await self._scan(ctx, customer_id, scan_id)
        if scan.status not in (SiteScanStatus.NICHE_DETECTED, SiteScanStatus.AWAITING_CONFIRMATION):
            raise PreconditionFailed(f"Cannot confirm niche in status: {scan.status.value}")
        scan.confirmed_niche = niche
        transition(scan, SiteScanStatus.DEEP_CRAWLING)
        await self.db.commit()
        logger.info("Scan %s niche confirmed as %s", scan.id, niche)
        return scan

    # === Finalize / cancel ===

    def _finalize_result(self, scan: SiteScan) -> dict[str, Any]:
        return {
            "scanId": str(scan.id),
            "status": scan.status.value,
            "trackingReadinessScore": scan.tracking_readiness_score,
            "readinessNarrative": scan.readiness_narrative,
            "totalRecommendations": scan.total_recommendations,
            "recommendationCounts": scan.recommendation_counts,
            "totalPagesScanned": scan.total_pages_scanned,
            "completedAt": scan.completed_at,
        }

    async def finalize(self, ctx: TenantContext, customer_id: UUID, scan_id: UUID) -> dict[str, Any]:
        """Score readiness and page importance, then complete the scan.

        A COMPLETED scan returns its stored result; nothing is recomputed.
        """
        scan = await self._scan(ctx, customer_id, scan_id)
        if scan.status == SiteScanStatus.COMPLETED:
            return self._finalize_result(scan)
        if scan.status not in (SiteScanStatus.DEEP_CRAWLING, SiteScanStatus.ANALYZING):
            raise PreconditionFailed(f"Cannot finalize in status: {scan.status.value}")
        if scan.status == SiteScanStatus.DEEP_CRAWLING:
            transition(scan, SiteScanStatus.ANALYZING)

        recs = await self._recommendations(scan.id)
        pages = await self._pages(scan.id)
        by_page: dict[str, list[TrackingRecommendation]] = {}
        for rec in recs:
            if rec.page_url:
                by_page.setdefault(rec.page_url, []).append(rec)
        for page in pages:
            page.importance_score = page_importance(page, by_page.get(page.url, []))

        counts = severity_counts(recs)
        score = readiness_score(counts)
        scan.recommendation_counts = counts
        scan.total_recommendations = len(recs)
        scan.tracking_readiness_score = score
        scan.readiness_narrative = readiness_narrative(counts, score)
        scan.completed_at = datetime.now(UTC)
        transition(scan, SiteScanStatus.COMPLETED)
        await self.db.commit()

        logger.info(
            "Scan %s completed: readiness %d, %d recommendation(s)", scan.id, score, len(recs)
        )
        await self._publish(
            scan,
            RealtimeEvent.SCAN_PROGRESS,
            {"scanId": str(scan.id), "phase": "finalize", "status": scan.status.value},
        )
        return self._finalize_result(scan)

    async def cancel(self, ctx: TenantContext, customer_id: UUID, scan_id: UUID) -> SiteScan:
        scan = await self._scan(ctx, customer_id, scan_id)
        if scan.is_terminal:
            raise PreconditionFailed(f"Scan is already {scan.status.value.lower()}")
        transition(scan, SiteScanStatus.CANCELLED)
        await self.db.commit()
        logger.info("Scan %s cancelled", scan.id)
        return scan

    async def _publish(self, scan: SiteScan, event: RealtimeEvent, data: dict[str, Any]) -> None:
        if self.realtime is not None:
            await self.realtime.publish(scan_channel(scan.id), event, data)

