"""Pattern tables for niche classification and tracking detection.

These drive the rule-based path of the scanner; the optional LLM refinement
in ``niche.py`` only adjusts the niche, never these tables.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from app.models.recommendation import FunnelStage, RecommendationSeverity
from app.models.tracking import TrackingType

AVAILABLE_NICHES = [
    "e-commerce",
    "saas",
    "lead-generation",
    "content",
    "non-profit",
    "marketplace",
    "education",
    "healthcare",
    "real-estate",
    "travel",
    "finance",
    "food-delivery",
    "entertainment",
    "other",
]

NICHE_ALIASES = {"ecommerce": "e-commerce", "lead_generation": "lead-generation"}


def _rx(*patterns: str) -> list[re.Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# === Niches ===


@dataclass(frozen=True)
class NichePattern:
    niche: str
    sub_categories: list[str]
    url_patterns: list[re.Pattern[str]]
    content_keywords: list[str]
    page_type_weights: dict[str, int]
    technologies: list[str]


NICHE_PATTERNS = [
    NichePattern(
        niche="e-commerce",
        sub_categories=["fashion", "electronics", "home-garden", "food-beverage", "general-retail"],
        url_patterns=_rx(
            r"/products?/", r"/shop/", r"/store/", r"/cart", r"/checkout",
            r"/collections?/", r"/categor(y|ies)/", r"/items?/", r"/order", r"/wishlist",
        ),
        content_keywords=[
            "add to cart", "buy now", "shop now", "price", "checkout", "shipping",
            "delivery", "in stock", "out of stock", "sku", "product", "catalog", "sale",
            "discount", "coupon", "shopping cart", "free shipping", "returns",
            "size guide", "quantity",
        ],
        page_type_weights={"product": 5, "checkout": 5, "cart": 4, "category": 3, "collection": 3},
        technologies=["Shopify", "WooCommerce", "Magento", "BigCommerce", "PrestaShop"],
    ),
    NichePattern(
        niche="saas",
        sub_categories=["b2b-saas", "b2c-saas", "devtools", "marketing-tools", "productivity"],
        url_patterns=_rx(
            r"/pricing", r"/features", r"/integrations", r"/docs/", r"/documentation",
            r"/api/", r"/changelog", r"/signup", r"/register", r"/demo", r"/trial",
        ),
        content_keywords=[
            "free trial", "start free", "pricing", "per month", "per year", "enterprise",
            "integration", "api", "dashboard", "analytics", "features", "platform",
            "solution", "subscribe", "plan", "demo", "request demo", "get started",
            "sign up free",
        ],
        page_type_weights={
            "pricing": 5, "features": 4, "integrations": 3, "documentation": 3, "changelog": 2,
        },
        technologies=["Intercom", "Drift", "Stripe"],
    ),
    NichePattern(
        niche="lead-generation",
        sub_categories=["real-estate", "legal", "medical", "consulting", "agency", "local-business"],
        url_patterns=_rx(
            r"/contact", r"/about", r"/services", r"/quote", r"/consultation",
            r"/appointment", r"/book", r"/schedule", r"/estimate", r"/request",
        ),
        content_keywords=[
            "contact us", "get a quote", "free consultation", "call us", "request a quote",
            "schedule", "appointment", "book now", "our services", "our team", "about us",
            "testimonials", "case studies", "portfolio", "clients", "free estimate",
            "phone", "email us", "get in touch",
        ],
        page_type_weights={"contact": 5, "services": 4, "about": 3, "testimonials": 3, "portfolio": 2},
        technologies=["Calendly", "HubSpot", "Typeform"],
    ),
    NichePattern(
        niche="content",
        sub_categories=["blog", "news", "media", "education", "publishing"],
        url_patterns=_rx(
            r"/blog/", r"/articles?/", r"/posts?/", r"/news/", r"/stories/",
            r"/podcast", r"/videos?/", r"/learn/", r"/resources?/", r"/guides?/",
        ),
        content_keywords=[
            "read more", "published", "author", "subscribe", "newsletter", "blog",
            "article", "latest posts", "trending", "editor", "share", "comment",
            "category", "tags", "read time", "related articles", "featured",
            "popular posts",
        ],
        page_type_weights={"blog": 5, "article": 4, "news": 4, "resource": 3},
        technologies=["WordPress", "Ghost", "Medium"],
    ),
    NichePattern(
        niche="non-profit",
        sub_categories=["charity", "education", "health", "environment", "community"],
        url_patterns=_rx(
            r"/donate", r"/volunteer", r"/causes?/", r"/mission", r"/impact", r"/campaigns?/",
        ),
        content_keywords=[
            "donate", "donation", "volunteer", "mission", "impact", "cause", "help",
            "support", "give", "fundraise", "community", "non-profit", "nonprofit",
            "charity",
        ],
        page_type_weights={"donate": 5, "volunteer": 4, "mission": 3, "impact": 3},
        technologies=[],
    ),
]


# === Element tracking patterns ===


@dataclass(frozen=True)
class TrackingPattern:
    name: str
    tracking_type: TrackingType
    severity: RecommendationSeverity
    funnel_stage: FunnelStage
    ga4_event_name: str
    description: str
    selector_patterns: list[str] = field(default_factory=list)
    text_patterns: list[re.Pattern[str]] = field(default_factory=list)
    url_patterns: list[re.Pattern[str]] = field(default_factory=list)

    @property
    def url_only(self) -> bool:
        """Page-level patterns match on the URL alone."""
        return bool(self.url_patterns) and not self.text_patterns


S = RecommendationSeverity
F = FunnelStage
T = TrackingType

UNIVERSAL_PATTERNS = [
    TrackingPattern(
        "Form Submission", T.FORM_SUBMIT, S.CRITICAL, F.BOTTOM, "generate_lead",
        "Track form submissions to measure lead generation and user sign-ups.",
        ["form[action]", 'form:has(button[type="submit"])', 'form:has(input[type="submit"])'],
        _rx(r"submit", r"send", r"sign\s*up", r"register", r"subscribe"),
    ),
    TrackingPattern(
        "Form Start", T.FORM_START, S.IMPORTANT, F.MIDDLE, "form_start",
        "Track when users begin filling out forms to measure form engagement.",
        ["form input:first-of-type", "form textarea:first-of-type", "form select:first-of-type"],
    ),
    TrackingPattern(
        "Phone Call Click", T.PHONE_CALL_CLICK, S.CRITICAL, F.BOTTOM, "phone_call_click",
        "Track phone number clicks as high-intent conversion actions.",
        ['a[href^="tel:"]'],
        _rx(r"call\s*(us|now)", r"phone"),
    ),
    TrackingPattern(
        "Email Click", T.EMAIL_CLICK, S.IMPORTANT, F.BOTTOM, "email_click",
        "Track email link clicks as lead generation signals.",
        ['a[href^="mailto:"]'],
        _rx(r"email\s*(us)?", r"contact"),
    ),
    TrackingPattern(
        "Video Play", T.VIDEO_PLAY, S.RECOMMENDED, F.TOP, "video_start",
        "Track video plays to measure multimedia engagement.",
        ["video", 'iframe[src*="youtube"]', 'iframe[src*="vimeo"]', 'iframe[src*="wistia"]'],
        _rx(r"play", r"watch"),
    ),
    TrackingPattern(
        "File Download", T.FILE_DOWNLOAD, S.RECOMMENDED, F.MIDDLE, "file_download",
        "Track file downloads as content engagement and lead qualification signals.",
        ['a[href$=".pdf"]', 'a[href$=".doc"]', 'a[href$=".docx"]', 'a[href$=".zip"]', "a[download]"],
        _rx(r"download", r"get\s*(the\s*)?pdf", r"brochure", r"whitepaper"),
    ),
    TrackingPattern(
        "Social Share", T.SOCIAL_SHARE, S.OPTIONAL, F.TOP, "share",
        "Track social sharing to measure content virality.",
        ['a[href*="facebook.com/sharer"]', 'a[href*="twitter.com/intent"]', ".share-button"],
        _rx(r"share"),
    ),
    TrackingPattern(
        "Newsletter Signup", T.NEWSLETTER_SIGNUP, S.RECOMMENDED, F.MIDDLE, "newsletter_signup",
        "Track newsletter sign-ups as lead nurturing conversions.",
        ['form[action*="subscribe"]', 'form[action*="newsletter"]', ".newsletter-form"],
        _rx(r"newsletter", r"subscribe", r"stay\s*updated", r"join\s*(our\s*)?list"),
    ),
]

ECOMMERCE_PATTERNS = [
    TrackingPattern(
        "Add to Cart", T.ADD_TO_CART, S.CRITICAL, F.MIDDLE, "add_to_cart",
        "Track add-to-cart actions as key mid-funnel conversion events.",
        ["button.add-to-cart", '[data-action="add-to-cart"]', "#add-to-cart", 'button[name="add"]'],
        _rx(r"add\s*to\s*cart", r"add\s*to\s*bag", r"buy"),
        _rx(r"/product", r"/item"),
    ),
    TrackingPattern(
        "Checkout Start", T.CHECKOUT_START, S.CRITICAL, F.BOTTOM, "begin_checkout",
        "Track checkout initiation as a critical bottom-funnel conversion.",
        ['a[href*="checkout"]', "button.checkout", "#checkout-button"],
        _rx(r"checkout", r"proceed\s*to", r"place\s*order"),
        _rx(r"/cart", r"/checkout"),
    ),
    TrackingPattern(
        "Purchase", T.PURCHASE, S.CRITICAL, F.BOTTOM, "purchase",
        "Track completed purchases as the primary revenue conversion.",
        ['button[type="submit"]', ".payment-submit", "#complete-order"],
        _rx(r"complete\s*(order|purchase)", r"pay\s*now", r"place\s*order", r"confirm"),
        _rx(r"/checkout", r"/payment", r"/order"),
    ),
    TrackingPattern(
        "Product View", T.PRODUCT_VIEW, S.IMPORTANT, F.TOP, "view_item",
        "Track product page views to measure shopping interest and funnel entry.",
        url_patterns=_rx(r"/product", r"/item", r"/p/"),
    ),
    TrackingPattern(
        "View Cart", T.VIEW_CART, S.IMPORTANT, F.MIDDLE, "view_cart",
        "Track cart views to measure purchase intent.",
        ['a[href*="cart"]', ".cart-icon", "#cart-link", ".mini-cart"],
        _rx(r"view\s*cart", r"my\s*cart", r"shopping\s*bag"),
    ),
    TrackingPattern(
        "Wishlist Add", T.ADD_TO_WISHLIST, S.RECOMMENDED, F.MIDDLE, "add_to_wishlist",
        "Track wishlist additions as engagement and retargeting signals.",
        [".wishlist-button", '[data-action="wishlist"]', ".save-for-later"],
        _rx(r"wishlist", r"save\s*for\s*later", r"favorite"),
    ),
    TrackingPattern(
        "Site Search", T.SITE_SEARCH, S.RECOMMENDED, F.TOP, "search",
        "Track site search to understand user intent and product discovery.",
        ['form[role="search"]', 'input[type="search"]', ".search-form"],
        _rx(r"search"),
    ),
    TrackingPattern(
        "Filter Use", T.FILTER_USE, S.OPTIONAL, F.TOP, "filter_use",
        "Track filter usage to understand product discovery behavior.",
        [".filter-option", "[data-filter]", ".facet-item"],
        _rx(r"filter", r"sort", r"refine"),
        _rx(r"/collection", r"/categor", r"/shop"),
    ),
]

SAAS_PATTERNS = [
    TrackingPattern(
        "Signup", T.SIGNUP, S.CRITICAL, F.BOTTOM, "sign_up",
        "Track sign-ups as the primary SaaS conversion event.",
        ['a[href*="signup"]', 'a[href*="register"]', 'a[href*="get-started"]', ".signup-button"],
        _rx(
            r"sign\s*up", r"get\s*started", r"start\s*(free|trial)",
            r"create\s*account", r"register", r"try\s*(it\s*)?free",
        ),
    ),
    TrackingPattern(
        "Demo Request", T.DEMO_REQUEST, S.CRITICAL, F.BOTTOM, "demo_request",
        "Track demo requests as high-intent enterprise conversion events.",
        ['a[href*="demo"]', "button.demo-button", ".request-demo"],
        _rx(r"request\s*(a\s*)?demo", r"book\s*(a\s*)?demo", r"schedule\s*(a\s*)?demo"),
    ),
    TrackingPattern(
        "Pricing Page View", T.PAGE_VIEW, S.IMPORTANT, F.MIDDLE, "view_pricing",
        "Track pricing page views as key intent signals in SaaS funnels.",
        url_patterns=_rx(r"/pricing"),
    ),
    TrackingPattern(
        "Feature Page View", T.PAGE_VIEW, S.RECOMMENDED, F.TOP, "view_features",
        "Track feature page views to measure product interest.",
        url_patterns=_rx(r"/features"),
    ),
]

LEAD_GEN_PATTERNS = [
    TrackingPattern(
        "Contact Form Submit", T.FORM_SUBMIT, S.CRITICAL, F.BOTTOM, "generate_lead",
        "Track contact form submissions as the primary lead conversion.",
        ['form[action*="contact"]', "#contact-form", ".contact-form"],
        _rx(r"send\s*message", r"get\s*in\s*touch", r"contact\s*us", r"submit"),
        _rx(r"/contact"),
    ),
    TrackingPattern(
        "Quote Request", T.FORM_SUBMIT, S.CRITICAL, F.BOTTOM, "request_quote",
        "Track quote requests as high-intent lead generation events.",
        ['form[action*="quote"]', "#quote-form", ".quote-form"],
        _rx(r"get\s*a?\s*quote", r"request\s*quote", r"free\s*estimate"),
        _rx(r"/quote", r"/estimate"),
    ),
    TrackingPattern(
        "Appointment Booking", T.FORM_SUBMIT, S.CRITICAL, F.BOTTOM, "book_appointment",
        "Track appointment bookings as direct lead conversions.",
        ['a[href*="calendly"]', 'a[href*="acuity"]', ".booking-button"],
        _rx(r"book\s*(an?\s*)?appointment", r"schedule", r"book\s*now"),
        _rx(r"/book", r"/schedule", r"/appointment"),
    ),
    TrackingPattern(
        "Services Page View", T.PAGE_VIEW, S.IMPORTANT, F.TOP, "view_services",
        "Track services page views to measure interest in offerings.",
        url_patterns=_rx(r"/services"),
    ),
]

CONTENT_PATTERNS = [
    TrackingPattern(
        "Article Read", T.SCROLL_DEPTH, S.IMPORTANT, F.TOP, "article_read",
        "Track article reads to measure content engagement depth.",
        url_patterns=_rx(r"/blog/", r"/article", r"/post"),
    ),
    TrackingPattern(
        "Newsletter Subscription", T.NEWSLETTER_SIGNUP, S.CRITICAL, F.MIDDLE, "newsletter_signup",
        "Track newsletter subscriptions as the primary content conversion.",
        ['form[action*="subscribe"]', ".newsletter-form", "#newsletter"],
        _rx(r"subscribe", r"newsletter", r"join", r"get\s*updates"),
    ),
    TrackingPattern(
        "Comment Submission", T.FORM_SUBMIT, S.RECOMMENDED, F.TOP, "submit_comment",
        "Track comment submissions as content engagement conversions.",
        ["#comment-form", ".comment-form", 'form[action*="comment"]'],
        _rx(r"post\s*comment", r"submit\s*comment", r"reply"),
    ),
]

_NICHE_TRACKING_PATTERNS = {
    "e-commerce": ECOMMERCE_PATTERNS,
    "saas": SAAS_PATTERNS,
    "lead-generation": LEAD_GEN_PATTERNS,
    "content": CONTENT_PATTERNS,
}


def normalize_niche(niche: str | None) -> str | None:
    if niche is None:
        return None
    return NICHE_ALIASES.get(niche, niche)


def patterns_for_niche(niche: str | None) -> list[TrackingPattern]:
    """Universal patterns followed by the niche's own, if it has any."""
    return UNIVERSAL_PATTERNS + _NICHE_TRACKING_PATTERNS.get(normalize_niche(niche) or "", [])


# === Site-wide behavioural trackings ===


@dataclass(frozen=True)
class BehavioralTracking:
    name: str
    description: str
    tracking_type: TrackingType
    severity: RecommendationSeverity
    severity_reason: str
    ga4_event_name: str
    funnel_stage: FunnelStage
    config: dict[str, Any]


UNIVERSAL_BEHAVIORAL_TRACKINGS = [
    BehavioralTracking(
        "Scroll Depth Milestones",
        "Track when users reach 25%, 50%, 75%, and 100% scroll depth on pages",
        T.SCROLL_DEPTH, S.IMPORTANT,
        "Essential for understanding content engagement and page optimization",
        "scroll", F.MIDDLE, {"thresholds": [25, 50, 75, 100], "unit": "percent"},
    ),
    BehavioralTracking(
        "Time on Page Milestones",
        "Track engagement time milestones (10s, 30s, 60s, 120s, 300s)",
        T.TIME_ON_PAGE, S.RECOMMENDED,
        "Helps measure content quality and user interest level",
        "time_on_page", F.MIDDLE, {"milestones": [10, 30, 60, 120, 300], "unit": "seconds"},
    ),
    BehavioralTracking(
        "Rage Click Detection",
        "Detect when users rapidly click the same element 3+ times",
        T.CUSTOM_EVENT, S.CRITICAL,
        "Reveals broken UI elements and user frustration that directly impacts conversions",
        "rage_click", F.BOTTOM, {"clickThreshold": 3, "timeWindow": 1000, "captureSelector": True},
    ),
    BehavioralTracking(
        "Dead Click Detection",
        "Track clicks on non-interactive elements",
        T.CUSTOM_EVENT, S.IMPORTANT,
        "Identifies UX confusion and missed interaction opportunities",
        "dead_click", F.MIDDLE,
        {"excludeTags": ["A", "BUTTON", "INPUT", "SELECT", "TEXTAREA"], "minClicks": 2},
    ),
    BehavioralTracking(
        "Tab Focus/Blur Events",
        "Track when users switch tabs or return to your page",
        T.TAB_SWITCH, S.OPTIONAL,
        "Helps understand multi-tasking behavior and attention patterns",
        "tab_visibility", F.MIDDLE, {"trackBlur": True, "trackFocus": True, "minTimeAway": 5000},
    ),
    BehavioralTracking(
        "Exit Intent Detection",
        "Detect when users move the cursor toward the browser close or back button",
        T.CUSTOM_EVENT, S.IMPORTANT,
        "Last chance to retain users before they leave",
        "exit_intent", F.BOTTOM, {"sensitivity": "medium", "showOnce": True, "excludeMobile": True},
    ),
    BehavioralTracking(
        "Form Field Interaction",
        "Track which form fields users focus on, complete, and abandon",
        T.FORM_ABANDON, S.IMPORTANT,
        "Critical for optimizing form conversion rates",
        "form_field_interaction", F.BOTTOM,
        {"trackFocus": True, "trackBlur": True, "trackChange": True, "capturePII": False},
    ),
    BehavioralTracking(
        "Error Page Views (404, 500)",
        "Track when users land on error pages or experience technical issues",
        T.CUSTOM_EVENT, S.CRITICAL,
        "Technical errors destroy user trust and conversions",
        "error_page_view", F.TOP, {"errorTypes": ["404", "500", "403", "502"], "captureReferrer": True},
    ),
    BehavioralTracking(
        "Outbound Link Clicks",
        "Track clicks on external links leaving your domain",
        T.LINK_CLICK, S.RECOMMENDED,
        "Understand referral traffic and external navigation patterns",
        "outbound_click", F.MIDDLE, {"trackAllOutbound": True, "captureDestination": True},
    ),
]

NICHE_BEHAVIORAL_TRACKINGS = {
    "e-commerce": [
        BehavioralTracking(
            "Product Image Interaction",
            "Track when users zoom, click, or hover on product images",
            T.CUSTOM_EVENT, S.IMPORTANT,
            "Strong purchase intent signal for e-commerce",
            "product_image_interaction", F.MIDDLE, {"trackZoom": True, "trackClick": True},
        ),
        BehavioralTracking(
            "Cart Abandonment Timer",
            "Track time between cart addition and checkout, detect abandonment patterns",
            T.CUSTOM_EVENT, S.CRITICAL,
            "Average cart abandonment rate is 70%, direct revenue impact",
            "cart_abandonment", F.BOTTOM,
            {"abandonmentThreshold": 300000, "trackPartialCheckout": True},
        ),
    ],
    "saas": [
        BehavioralTracking(
            "Pricing Toggle Interaction",
            "Track monthly/annual toggles and plan comparisons on the pricing page",
            T.CUSTOM_EVENT, S.IMPORTANT,
            "Plan comparison indicates purchase readiness",
            "price_comparison", F.MIDDLE, {"trackToggle": True, "trackPlanHover": True},
        ),
    ],
    "content": [
        BehavioralTracking(
            "Content Read-Through Score",
            "Combine scroll depth and reading time into a read-through score per article",
            T.CUSTOM_EVENT, S.IMPORTANT,
            "Separates skimmers from readers on content pages",
            "content_read_through", F.MIDDLE, {"wordsPerMinute": 200, "minScrollPercent": 75},
        ),
    ],
    "lead-generation": [
        BehavioralTracking(
            "CTA Hover Hesitation",
            "Track hovers on primary CTAs that do not lead to a click",
            T.CUSTOM_EVENT, S.IMPORTANT,
            "Hesitation on CTAs points at copy or offer problems",
            "cta_hesitation", F.BOTTOM, {"hoverThresholdMs": 2000},
        ),
    ],
}


def behavioral_trackings(niche: str | None) -> list[BehavioralTracking]:
    key = normalize_niche(niche)
    return UNIVERSAL_BEHAVIORAL_TRACKINGS + NICHE_BEHAVIORAL_TRACKINGS.get(key or "", [])
