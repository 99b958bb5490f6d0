"""Turn crawled pages into tracking opportunities."""

from dataclasses import dataclass, field
from typing import Any

from app.models.recommendation import FunnelStage, RecommendationSeverity
from app.models.tracking import Destination, TrackingType
from app.services.scanner.crawler import ExtractedElement, ParsedPage, url_pattern_for
from app.services.scanner.patterns import TrackingPattern, behavioral_trackings
from app.services.scanner.selectors import best_selector, generate_selector

PAGE_VIEW_SEVERITY = {
    "checkout": RecommendationSeverity.CRITICAL,
    "cart": RecommendationSeverity.IMPORTANT,
    "pricing": RecommendationSeverity.IMPORTANT,
    "signup": RecommendationSeverity.IMPORTANT,
    "demo": RecommendationSeverity.IMPORTANT,
    "contact": RecommendationSeverity.RECOMMENDED,
    "product": RecommendationSeverity.RECOMMENDED,
}

PAGE_VIEW_FUNNEL = {
    "checkout": FunnelStage.BOTTOM,
    "cart": FunnelStage.BOTTOM,
    "signup": FunnelStage.BOTTOM,
    "demo": FunnelStage.BOTTOM,
    "pricing": FunnelStage.MIDDLE,
    "contact": FunnelStage.MIDDLE,
    "product": FunnelStage.MIDDLE,
}

SITE_WIDE_PATTERN = ".*"

SEVERITY_REASONS = {
    RecommendationSeverity.CRITICAL: "Direct conversion action with revenue impact",
    RecommendationSeverity.IMPORTANT: "Strong intent signal that feeds conversion optimisation",
    RecommendationSeverity.RECOMMENDED: "Useful engagement signal for funnel analysis",
    RecommendationSeverity.OPTIONAL: "Nice-to-have engagement insight",
}


@dataclass
class Opportunity:
    name: str
    description: str
    tracking_type: TrackingType
    severity: RecommendationSeverity
    severity_reason: str
    funnel_stage: FunnelStage
    ga4_event_name: str
    page_url: str
    selector: str | None = None
    selector_config: dict[str, Any] | None = None
    selector_confidence: float | None = None
    url_pattern: str | None = None
    element_context: dict[str, Any] | None = None
    config: dict[str, Any] = field(default_factory=dict)
    behavioral: bool = False

    @property
    def suggested_destinations(self) -> list[Destination]:
        if self.funnel_stage == FunnelStage.BOTTOM or self.severity in (
            RecommendationSeverity.CRITICAL,
            RecommendationSeverity.IMPORTANT,
        ):
            return [Destination.GA4, Destination.GOOGLE_ADS]
        return [Destination.GA4]

    @property
    def suggested_config(self) -> dict[str, Any]:
        config: dict[str, Any] = dict(self.config)
        match self.tracking_type:
            case TrackingType.SCROLL_DEPTH:
                config.setdefault("scrollPercentage", 75)
            case TrackingType.TIME_ON_PAGE:
                config.setdefault("timeSeconds", 30)
            case TrackingType.PURCHASE:
                config.setdefault("value", 0)
                config.setdefault("currency", "USD")
            case TrackingType.ADD_TO_CART:
                config.setdefault("value", 0)
            case _:
                pass
        if self.selector:
            config["selector"] = self.selector
        if self.url_pattern:
            config["urlPattern"] = self.url_pattern
        return config


def dedup_key(
    tracking_type: str,
    name: str,
    page_url: str | None,
    selector: str | None,
    url_pattern: str | None,
    behavioral: bool = False,
) -> str:
    """Behavioural trackings are site-wide, so they dedupe on type and name alone."""
    if behavioral:
        return f"{tracking_type}:{name}"
    return f"{tracking_type}:{page_url or ''}:{selector or url_pattern or ''}"


def opportunity_key(opp: Opportunity) -> str:
    return dedup_key(
        opp.tracking_type.value, opp.name, opp.page_url, opp.selector, opp.url_pattern, opp.behavioral
    )


def _matches_element(pattern: TrackingPattern, element: ExtractedElement) -> bool:
    href = element.href or ""
    if pattern.tracking_type == TrackingType.PHONE_CALL_CLICK:
        return href.startswith("tel:")
    if pattern.tracking_type == TrackingType.EMAIL_CLICK:
        return href.startswith("mailto:")
    if pattern.tracking_type == TrackingType.VIDEO_PLAY:
        return element.tag_name in ("video", "iframe")
    if pattern.tracking_type == TrackingType.FORM_START:
        return element.tag_name in ("input", "textarea", "select") and element.parent_form is not None
    if pattern.tracking_type in (TrackingType.FORM_SUBMIT, TrackingType.NEWSLETTER_SIGNUP):
        if element.tag_name == "form":
            haystack = " ".join(filter(None, [element.action, element.id, element.class_name]))
            return any(p.search(haystack) for p in pattern.text_patterns)
    if pattern.tracking_type == TrackingType.FILE_DOWNLOAD and href:
        if any(href.lower().endswith(ext) for ext in (".pdf", ".doc", ".docx", ".zip")):
            return True

    if not pattern.text_patterns:
        return False
    haystack = " ".join(filter(None, [element.text, element.aria_label, href]))
    return bool(haystack) and any(p.search(haystack) for p in pattern.text_patterns)


def detect_by_patterns(
    page: ParsedPage, elements: list[ExtractedElement], patterns: list[TrackingPattern]
) -> list[Opportunity]:
    """At most one opportunity per pattern per page."""
    opportunities: list[Opportunity] = []
    for pattern in patterns:
        if pattern.url_patterns and not any(p.search(page.url) for p in pattern.url_patterns):
            continue

        if pattern.url_only:
            opportunities.append(_from_pattern(pattern, page, url_pattern=url_pattern_for(page.url)))
            continue

        for element in elements:
            if not _matches_element(pattern, element):
                continue
            config = generate_selector(element)
            best = best_selector(config)
            if best is None:
                continue
            selector, confidence = best
            opportunities.append(
                _from_pattern(
                    pattern,
                    page,
                    selector=selector,
                    selector_config=config.as_dict(),
                    selector_confidence=confidence,
                    element_context=element.as_context(),
                )
            )
            break
    return opportunities


def _from_pattern(pattern: TrackingPattern, page: ParsedPage, **extra: Any) -> Opportunity:
    return Opportunity(
        name=pattern.name,
        description=pattern.description,
        tracking_type=pattern.tracking_type,
        severity=pattern.severity,
        severity_reason=SEVERITY_REASONS[pattern.severity],
        funnel_stage=pattern.funnel_stage,
        ga4_event_name=pattern.ga4_event_name,
        page_url=page.url,
        **extra,
    )


def page_view_opportunity(url: str, page_type: str) -> Opportunity | None:
    severity = PAGE_VIEW_SEVERITY.get(page_type)
    if severity is None:
        return None
    label = page_type.capitalize()
    return Opportunity(
        name=f"{label} Page View",
        description=f"Track visits to {page_type} pages as a funnel progression signal.",
        tracking_type=TrackingType.PAGE_VIEW,
        severity=severity,
        severity_reason=SEVERITY_REASONS[severity],
        funnel_stage=PAGE_VIEW_FUNNEL.get(page_type, FunnelStage.MIDDLE),
        ga4_event_name=f"view_{page_type}",
        page_url=url,
        url_pattern=url_pattern_for(url),
    )


def behavioral_opportunities(niche: str | None, home_url: str) -> list[Opportunity]:
    return [
        Opportunity(
            name=b.name,
            description=b.description,
            tracking_type=b.tracking_type,
            severity=b.severity,
            severity_reason=b.severity_reason,
            funnel_stage=b.funnel_stage,
            ga4_event_name=b.ga4_event_name,
            page_url=home_url,
            url_pattern=SITE_WIDE_PATTERN,
            config=dict(b.config),
            behavioral=True,
        )
        for b in behavioral_trackings(niche)
    ]
