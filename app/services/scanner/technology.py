"""Tech stack and existing tracking detection from raw HTML and response headers."""

import re
from dataclasses import asdict, dataclass, field
from typing import Any

ECOMMERCE_PLATFORMS = ("WooCommerce", "Magento", "BigCommerce", "Shopify")
CDN_NAMES = ("Cloudflare", "Vercel", "Nginx", "Apache")


@dataclass
class Technology:
    name: str
    category: str
    confidence: float
    version: str | None = None


@dataclass
class ExistingTracking:
    type: str
    provider: str
    details: str | None = None


@dataclass
class TechnologyReport:
    technologies: list[Technology] = field(default_factory=list)
    existing_tracking: list[ExistingTracking] = field(default_factory=list)

    def has(self, name: str) -> bool:
        return any(t.name == name for t in self.technologies)

    def summary(self) -> dict[str, Any]:
        """Compact form stored in the scan's live discovery."""
        cms = next((t.name for t in self.technologies if t.category == "cms"), None)
        framework = next((t.name for t in self.technologies if t.category == "framework"), None)
        ecommerce = next((t.name for t in self.technologies if t.name in ECOMMERCE_PLATFORMS), None)
        cdn = next((t.name for t in self.technologies if t.name in CDN_NAMES), None)
        return {
            "cms": cms,
            "framework": framework,
            "analytics": [t.provider for t in self.existing_tracking],
            "ecommerce": ecommerce,
            "cdn": cdn,
        }

    def tracking_dicts(self) -> list[dict[str, Any]]:
        return [{k: v for k, v in asdict(t).items() if v is not None} for t in self.existing_tracking]


# (needles, name, category, confidence); any needle in the lowercased HTML matches
_CMS_MARKERS = [
    (("cdn.shopify.com", "shopify-digital-wallet"), "Shopify", "cms", 1.0),
    (("wix-dynamic-custom-elements", "static.wixstatic.com"), "Wix", "cms", 1.0),
    (("squarespace.com",), "Squarespace", "cms", 1.0),
    (("assets.website-files.com", "webflow.com"), "Webflow", "cms", 0.9),
    (("drupal.js", "/sites/default/files/"), "Drupal", "cms", 0.9),
]

_TRACKING_MARKERS = [
    (("connect.facebook.net", "fbevents.js"), "pixel", "Facebook Pixel"),
    (("facebook.com/tr?",), "pixel", "Meta Pixel"),
    (("analytics.tiktok.com",), "pixel", "TikTok Pixel"),
    (("snap.licdn.com", "linkedin.com/insight"), "pixel", "LinkedIn Insight"),
    (("pintrk", "s.pinimg.com"), "pixel", "Pinterest Tag"),
    (("js.hs-scripts.com", "js.hubspot.com"), "marketing", "HubSpot"),
    (("static.hotjar.com",), "heatmap", "Hotjar"),
    (("clarity.ms",), "heatmap", "Microsoft Clarity"),
    (("widget.intercom.io",), "chat", "Intercom"),
    (("js.driftt.com",), "chat", "Drift"),
    (("client.crisp.chat",), "chat", "Crisp"),
    (("cdn.segment.com",), "cdp", "Segment"),
    (("cdn.mxpnl.com", "mixpanel.com/libs"), "analytics", "Mixpanel"),
    (("cdn.amplitude.com",), "analytics", "Amplitude"),
    (("heap-", "heapanalytics.com"), "analytics", "Heap"),
    (("googleads.g.doubleclick.net", "google_conversion_id"), "advertising", "Google Ads"),
]


def _any_in(haystack: str, needles: tuple[str, ...]) -> bool:
    return any(n in haystack for n in needles)


def detect_technologies(html: str, headers: dict[str, str] | None = None) -> TechnologyReport:
    headers = {k.lower(): v for k, v in (headers or {}).items()}
    return TechnologyReport(
        technologies=_detect_stack(html, headers),
        existing_tracking=_detect_tracking(html),
    )


def _detect_stack(html: str, headers: dict[str, str]) -> list[Technology]:
    lower = html.lower()
    techs: list[Technology] = []

    def found(name: str) -> bool:
        return any(t.name == name for t in techs)

    if "wp-content/" in lower or "wp-includes/" in lower:
        version = re.search(r'content="WordPress\s+([\d.]+)"', html, re.IGNORECASE)
        techs.append(Technology("WordPress", "cms", 1.0, version.group(1) if version else None))
    elif re.search(r'meta\s+name="generator"\s+content="WordPress', html, re.IGNORECASE):
        techs.append(Technology("WordPress", "cms", 0.95))

    for needles, name, category, confidence in _CMS_MARKERS:
        if _any_in(lower, needles):
            techs.append(Technology(name, category, confidence))
    if "/media/jui/" in lower or re.search(r'content="Joomla', html, re.IGNORECASE):
        techs.append(Technology("Joomla", "cms", 0.9))

    if _any_in(lower, ("__next", "_next/static")):
        techs.append(Technology("Next.js", "framework", 0.95))
    if _any_in(lower, ("__nuxt", "/_nuxt/")):
        techs.append(Technology("Nuxt.js", "framework", 0.95))
    if not found("Next.js") and _any_in(lower, ("data-reactroot", "react-root")):
        techs.append(Technology("React", "framework", 0.8))
    if not found("Nuxt.js") and (re.search(r"data-v-[a-f0-9]", lower) or "vue.js" in lower):
        techs.append(Technology("Vue.js", "framework", 0.8))
    if _any_in(lower, ("ng-app", "ng-version")):
        techs.append(Technology("Angular", "framework", 0.8))
    if "data-svelte-h" in lower or "__svelte" in lower:
        techs.append(Technology("Svelte", "framework", 0.8))
    if "___gatsby" in lower:
        techs.append(Technology("Gatsby", "framework", 0.9))

    if _any_in(lower, ("woocommerce", "wc-", "add_to_cart")) and not found("Shopify"):
        techs.append(Technology("WooCommerce", "other", 0.9))
    if _any_in(lower, ("mage-", "magento")):
        techs.append(Technology("Magento", "other", 0.9))
    if _any_in(lower, ("bigcommerce.com", "stencil-utils")):
        techs.append(Technology("BigCommerce", "other", 0.9))

    powered_by = headers.get("x-powered-by", "").lower()
    if "express" in powered_by and not any(t.category == "framework" for t in techs):
        techs.append(Technology("Express.js", "framework", 0.7))
    server = headers.get("server", "").lower()
    if "nginx" in server:
        techs.append(Technology("Nginx", "other", 0.8))
    elif "apache" in server:
        techs.append(Technology("Apache", "other", 0.8))
    if headers.get("x-shopify-stage") and not found("Shopify"):
        techs.append(Technology("Shopify", "cms", 1.0))

    if "cloudflare" in lower or headers.get("cf-ray"):
        techs.append(Technology("Cloudflare", "other", 0.9))
    if headers.get("x-vercel-id") or "vercel.app" in lower:
        techs.append(Technology("Vercel", "other", 0.9))

    return techs


def _detect_tracking(html: str) -> list[ExistingTracking]:
    lower = html.lower()
    tracking: list[ExistingTracking] = []

    gtm = re.search(r"googletagmanager\.com/gtm\.js\?id=(GTM-[A-Z0-9]+)", html, re.IGNORECASE)
    if gtm or "googletagmanager.com" in lower:
        tracking.append(
            ExistingTracking("tag_manager", "Google Tag Manager", gtm.group(1) if gtm else None)
        )
    ga4 = re.search(r"gtag/js\?id=(G-[A-Z0-9]+)", html, re.IGNORECASE)
    if ga4 or "gtag/js" in lower:
        tracking.append(
            ExistingTracking("analytics", "Google Analytics 4", ga4.group(1) if ga4 else None)
        )

    if "analytics.js" in lower or re.search(r"UA-\d+-\d+", html):
        tracking.append(ExistingTracking("analytics", "Universal Analytics (Legacy)"))

    for needles, kind, provider in _TRACKING_MARKERS:
        if _any_in(lower, needles):
            tracking.append(ExistingTracking(kind, provider))
    return tracking


def merge_technology_summary(current: dict[str, Any], summary: dict[str, Any]) -> dict[str, Any]:
    """First detection wins for single-valued fields; analytics accumulate without duplicates."""
    merged = dict(current)
    for key in ("cms", "framework", "ecommerce", "cdn"):
        if summary.get(key) and not merged.get(key):
            merged[key] = summary[key]
    analytics = list(merged.get("analytics") or [])
    for provider in summary.get("analytics") or []:
        if provider not in analytics:
            analytics.append(provider)
    merged["analytics"] = analytics
    return merged


def technology_list(summary: dict[str, Any]) -> list[dict[str, Any]]:
    """Flatten a discovery summary into ``[{name, category, confidence}]`` for niche detection."""
    techs: list[dict[str, Any]] = []
    if summary.get("cms"):
        techs.append({"name": summary["cms"], "category": "cms", "confidence": 0.9})
    if summary.get("framework"):
        techs.append({"name": summary["framework"], "category": "framework", "confidence": 0.9})
    if summary.get("ecommerce"):
        techs.append({"name": summary["ecommerce"], "category": "other", "confidence": 0.9})
    if summary.get("cdn"):
        techs.append({"name": summary["cdn"], "category": "other", "confidence": 0.8})
    for provider in summary.get("analytics") or []:
        techs.append({"name": provider, "category": "analytics", "confidence": 0.9})
    return techs
