"""HTML crawling primitives: fetch, parse, link discovery and URL hygiene.

Everything here works on static HTML with httpx and BeautifulSoup; there is
no browser. ``PageFetcher`` is the only piece that touches the network so
the scan service can swap it out.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

import httpx
from bs4 import BeautifulSoup, Tag

from app.core.config import settings
from app.services.scanner.login import LOGIN_CLASSIFY_PATTERNS, route_path

logger = logging.getLogger(__name__)

SKIP_EXTENSIONS = re.compile(
    r"\.(pdf|zip|rar|png|jpe?g|gif|svg|webp|mp4|mp3|ico|woff2?|ttf|eot|css|js|xml|json)(\?|$)",
    re.IGNORECASE,
)
SKIP_PATHS = re.compile(r"/(wp-admin|wp-json|api|admin|_next|static)/", re.IGNORECASE)
SKIP_SCHEMES = ("mailto:", "tel:", "javascript:")

TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_content",
        "utm_term",
        "fbclid",
        "gclid",
        "ref",
        "mc_cid",
        "mc_eid",
    }
)

CTA_SELECTOR = (
    'button, a.btn, a.button, [role="button"], .cta, [class*="cta"], [class*="btn-primary"]'
)
CTA_TEXT = re.compile(
    r"buy|cart|checkout|sign\s*up|register|demo|trial|download|subscribe|book|schedule"
    r"|get\s*started|try\s*free|add\s*to\s*cart|contact",
    re.IGNORECASE,
)
VIDEO_SELECTOR = 'video, iframe[src*="youtube"], iframe[src*="vimeo"], iframe[src*="wistia"]'
DOWNLOAD_HREF = re.compile(r"\.(pdf|doc|docx|xls|xlsx|zip)$", re.IGNORECASE)
SIGNIFICANT_LINK_TEXT = re.compile(
    r"buy|cart|checkout|sign\s*up|register|demo|trial|download|subscribe|book|schedule",
    re.IGNORECASE,
)
SUMMARY_SELECTORS = ("main", "article", '[role="main"]', ".content", "#content")
META_NAMES = {
    "title": "title",
    "description": "description",
    "keywords": "keywords",
    "og:title": "ogTitle",
    "og:description": "ogDescription",
    "og:type": "ogType",
    "og:image": "ogImage",
}

_UUID_PREFIX = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-", re.IGNORECASE)
_DIGITS = re.compile(r"^\d+$")
_SLUG_WITH_DIGIT = re.compile(r"^[a-z0-9][\w-]*$", re.IGNORECASE)
_LONG_SLUG = re.compile(r"^[a-z0-9-]+$", re.IGNORECASE)
_WS = re.compile(r"\s+")

PAGE_TYPE_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("checkout", re.compile(r"/(checkout|pay|payment)", re.IGNORECASE)),
    ("cart", re.compile(r"/(cart|basket|bag)", re.IGNORECASE)),
    ("product", re.compile(r"/(product|item|shop)/", re.IGNORECASE)),
    ("pricing", re.compile(r"/(pricing|plans)", re.IGNORECASE)),
    ("contact", re.compile(r"/(contact|reach-us)", re.IGNORECASE)),
    ("about", re.compile(r"/(about|team)", re.IGNORECASE)),
    ("blog", re.compile(r"/(blog|article|post|news)", re.IGNORECASE)),
]
PAGE_TYPE_RULES_AFTER_LOGIN: list[tuple[str, re.Pattern[str]]] = [
    ("signup", re.compile(r"/(signup|register|sign-up)", re.IGNORECASE)),
    ("faq", re.compile(r"/(faq|help|support)", re.IGNORECASE)),
    ("services", re.compile(r"/(services|solutions)", re.IGNORECASE)),
    ("demo", re.compile(r"/(demo|request-demo)", re.IGNORECASE)),
    ("terms", re.compile(r"/(terms|privacy|legal|policy)", re.IGNORECASE)),
]
_CATEGORY = re.compile(r"/(categor|collection)", re.IGNORECASE)


# === URL helpers ===


def normalize_url(url: str) -> str | None:
    """Canonical form used for crawl dedup, or None for non-http(s) URLs.

    Keeps ``#/`` client-side routes, drops other fragments, tracking query
    parameters and trailing slashes.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None

    fragment = parsed.fragment if parsed.fragment.startswith("/") else ""
    path = parsed.path.rstrip("/") or "/"
    query = urlencode(
        [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k not in TRACKING_PARAMS]
    )
    return urlunparse((parsed.scheme, parsed.netloc.lower(), path, "", query, fragment))


def base_domain(hostname: str) -> str:
    """Last two labels, so www.example.com and shop.example.com match."""
    parts = hostname.lower().split(".")
    if len(parts) <= 2:
        return hostname.lower()
    return ".".join(parts[-2:])


def hostname_of(url: str) -> str:
    return urlparse(url).hostname or ""


def should_skip_url(url: str) -> bool:
    lowered = url.lower()
    if lowered.startswith(SKIP_SCHEMES):
        return True
    path = urlparse(url).path
    return bool(SKIP_EXTENSIONS.search(path) or SKIP_PATHS.search(path + "/"))


def classify_page_type(url: str) -> str:
    """First matching rule on the route path; homepage only for a bare ``/``."""
    parsed = urlparse(url)
    path, _ = route_path(url)

    for page_type, pattern in PAGE_TYPE_RULES:
        if pattern.search(path):
            return page_type
    if any(p.search(path) for p in LOGIN_CLASSIFY_PATTERNS):
        return "login"
    for page_type, pattern in PAGE_TYPE_RULES_AFTER_LOGIN:
        if pattern.search(path):
            return page_type
    if path in ("", "/") and not parsed.fragment:
        return "homepage"
    if _CATEGORY.search(path):
        return "category"
    return "other"


def detect_template_group(url: str) -> str | None:
    """Collapse id-like path segments so ``/product/123`` and ``/product/456`` group together.

    The first segment stays literal; single-segment paths have no group.
    """
    path, _ = route_path(url)
    segments = [s for s in path.split("/") if s]
    if len(segments) < 2:
        return None

    grouped = [segments[0]]
    for segment in segments[1:]:
        if _UUID_PREFIX.match(segment) or _DIGITS.match(segment):
            grouped.append("{id}")
        elif re.search(r"\d", segment) and _SLUG_WITH_DIGIT.match(segment):
            grouped.append("{slug}")
        elif _LONG_SLUG.match(segment) and len(segment) > 30:
            grouped.append("{slug}")
        else:
            grouped.append(segment)
    return "/" + "/".join(grouped)


def url_pattern_for(url: str) -> str:
    """Path with UUIDs and numeric segments replaced by ``*``."""
    path = urlparse(url).path
    path = re.sub(
        r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", "*", path, flags=re.IGNORECASE
    )
    return re.sub(r"/\d+(?=/|$)", "/*", path)


# === Fetching ===


@dataclass
class FetchResult:
    url: str
    final_url: str
    status_code: int
    html: str
    headers: dict[str, str]


class PageFetcher:
    """Fetches HTML pages with a browser-like identity and optional session cookies."""

    def __init__(
        self,
        cookies: dict[str, str] | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client = httpx.AsyncClient(
            transport=transport,
            timeout=timeout or settings.crawler_timeout_seconds,
            follow_redirects=True,
            cookies=cookies or {},
            headers={
                "User-Agent": user_agent or settings.crawler_user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
            },
        )

    async def __aenter__(self) -> "PageFetcher":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    @property
    def cookies(self) -> dict[str, str]:
        return {name: value for name, value in self.client.cookies.items()}

    async def fetch(self, url: str) -> FetchResult | None:
        """HTML at ``url`` after redirects, or None for errors and non-HTML responses."""
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            logger.debug("Fetch failed for %s: %s", url, e)
            return None

        if response.status_code >= 400:
            logger.debug("Fetch of %s returned %d", url, response.status_code)
            return None
        content_type = response.headers.get("content-type", "")
        if "text/html" not in content_type and "xhtml" not in content_type:
            return None

        return FetchResult(
            url=url,
            final_url=str(response.url),
            status_code=response.status_code,
            html=response.text,
            headers={k.lower(): v for k, v in response.headers.items()},
        )


# === Parsing ===


@dataclass
class ParsedPage:
    url: str
    depth: int
    title: str | None
    page_type: str
    template_group: str | None
    meta_tags: dict[str, str]
    headings: list[dict[str, Any]]
    content_summary: str
    has_form: bool
    has_cta: bool
    has_video: bool
    has_phone_link: bool
    has_email_link: bool
    has_download_link: bool
    links: list[str] = field(default_factory=list)
    anchors: list[tuple[str, str]] = field(default_factory=list)


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def _text(tag: Tag | None, limit: int | None = None) -> str:
    if tag is None:
        return ""
    text = _WS.sub(" ", tag.get_text(" ", strip=True)).strip()
    return text[:limit] if limit else text


def parse_page(url: str, html: str, depth: int, soup: BeautifulSoup | None = None) -> ParsedPage:
    soup = soup or make_soup(html)

    title = _text(soup.title) or None
    meta_tags: dict[str, str] = {}
    for meta in soup.find_all("meta"):
        key = meta.get("name") or meta.get("property")
        if key and key.lower() in META_NAMES and meta.get("content"):
            meta_tags[META_NAMES[key.lower()]] = meta["content"]

    headings = [
        {"level": int(h.name[1]), "text": _text(h, 200)}
        for h in soup.find_all(["h1", "h2", "h3"], limit=20)
        if _text(h)
    ]

    container = None
    for selector in SUMMARY_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            break
    content_summary = _text(container or soup.body or soup, 800)

    has_video = soup.find("video") is not None or any(
        re.search(r"youtube|vimeo|wistia", iframe.get("src") or "", re.IGNORECASE)
        for iframe in soup.find_all("iframe")
    )
    anchors = [(a.get("href") or "", _text(a, 100)) for a in soup.find_all("a", href=True)]
    hrefs = [href for href, _ in anchors]

    return ParsedPage(
        url=url,
        depth=depth,
        title=title,
        page_type=classify_page_type(url),
        template_group=detect_template_group(url),
        meta_tags=meta_tags,
        headings=headings,
        content_summary=content_summary,
        has_form=soup.find("form") is not None,
        has_cta=bool(soup.select(CTA_SELECTOR)),
        has_video=has_video,
        has_phone_link=any(h.startswith("tel:") for h in hrefs),
        has_email_link=any(h.startswith("mailto:") for h in hrefs),
        has_download_link=any(DOWNLOAD_HREF.search(h) for h in hrefs)
        or soup.find("a", attrs={"download": True}) is not None,
        links=discover_links(hrefs, url),
        anchors=anchors,
    )


def discover_links(hrefs: list[str], page_url: str) -> list[str]:
    """Normalised same-site links, in document order, without duplicates."""
    site = base_domain(hostname_of(page_url))
    found: dict[str, None] = {}
    for href in hrefs:
        if not href or href.lower().startswith(SKIP_SCHEMES):
            continue
        resolved = urljoin(page_url, href)
        if base_domain(hostname_of(resolved)) != site or should_skip_url(resolved):
            continue
        normalized = normalize_url(resolved)
        if normalized:
            found[normalized] = None
    return list(found)


# === Element extraction ===


def _form_type(form: Tag) -> str:
    haystack = " ".join(
        [form.get("action") or "", " ".join(form.get("class") or []), form.get("id") or ""]
    )
    if re.search(r"search", haystack, re.IGNORECASE):
        return "search"
    if re.search(r"contact|inquiry|message", haystack, re.IGNORECASE):
        return "contact"
    if re.search(r"login|signin", haystack, re.IGNORECASE):
        return "login"
    if re.search(r"signup|register|subscribe|newsletter", haystack, re.IGNORECASE):
        return "signup"
    if re.search(r"checkout|payment|billing", haystack, re.IGNORECASE):
        return "checkout"
    return "other"


def extract_priority_elements(url: str, soup: BeautifulSoup) -> dict[str, list[dict[str, Any]]]:
    """Conversion-relevant elements surfaced in the live discovery panel."""
    forms = []
    for form in soup.find_all("form"):
        form_id = form.get("id")
        forms.append({"url": url, "type": _form_type(form), "selector": f"#{form_id}" if form_id else None})

    ctas = []
    for el in soup.select(CTA_SELECTOR):
        text = _text(el, 80)
        if text and CTA_TEXT.search(text):
            el_id = el.get("id")
            ctas.append({"url": url, "text": text, "selector": f"#{el_id}" if el_id else None})

    videos = []
    for el in soup.select(VIDEO_SELECTOR):
        src = (el.get("src") or "").lower()
        platform = next((p for p in ("YouTube", "Vimeo", "Wistia") if p.lower() in src), None)
        videos.append({"url": url, "platform": platform})

    phones = [
        {"url": url, "number": a["href"].removeprefix("tel:")}
        for a in soup.select('a[href^="tel:"]')
    ]
    emails = [
        {"url": url, "email": a["href"].removeprefix("mailto:").split("?")[0]}
        for a in soup.select('a[href^="mailto:"]')
    ]
    return {
        "forms": forms,
        "ctas": ctas,
        "videoEmbeds": videos,
        "phoneLinks": phones,
        "emailLinks": emails,
    }


@dataclass
class ExtractedElement:
    """An interactive element a tracking could be attached to."""

    tag_name: str
    type: str | None = None
    text: str = ""
    href: str | None = None
    id: str | None = None
    class_name: str = ""
    name: str | None = None
    action: str | None = None
    method: str | None = None
    placeholder: str | None = None
    aria_label: str | None = None
    parent_form: str | None = None
    data_attributes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_tag(cls, tag: Tag, **overrides: Any) -> "ExtractedElement":
        classes = tag.get("class") or []
        data_attrs = {
            k: str(v) for k, v in tag.attrs.items() if k.startswith("data-") and isinstance(v, str)
        }
        values: dict[str, Any] = {
            "tag_name": tag.name,
            "type": tag.get("type"),
            "id": tag.get("id") or None,
            "class_name": " ".join(classes)[:200],
            "name": tag.get("name"),
            "aria_label": tag.get("aria-label"),
            "data_attributes": data_attrs,
        }
        values.update(overrides)
        return cls(**values)

    def as_context(self) -> dict[str, Any]:
        context = {
            "buttonText": self.text or None,
            "tagName": self.tag_name,
            "nearbyContent": self.aria_label,
            "parentForm": self.parent_form,
            "inputType": self.type,
        }
        return {k: v for k, v in context.items() if v is not None}


def extract_interactive_elements(soup: BeautifulSoup) -> list[ExtractedElement]:
    """Buttons, forms, significant links, videos and form inputs, in that order."""
    elements: list[ExtractedElement] = []

    for el in soup.select('button, [role="button"], input[type="submit"], input[type="button"]'):
        text = _text(el, 100) or (el.get("value") or "")
        elements.append(ExtractedElement.from_tag(el, text=text))

    for form in soup.find_all("form"):
        elements.append(
            ExtractedElement.from_tag(
                form, action=form.get("action"), method=(form.get("method") or "get").lower()
            )
        )

    for a in soup.find_all("a", href=True):
        href = a["href"]
        text = _text(a, 100)
        classes = " ".join(a.get("class") or [])
        if (
            href.startswith(("tel:", "mailto:"))
            or DOWNLOAD_HREF.search(href)
            or a.has_attr("download")
            or re.search(r"btn|button|cta", classes, re.IGNORECASE)
            or SIGNIFICANT_LINK_TEXT.search(text)
        ):
            elements.append(ExtractedElement.from_tag(a, href=href[:200], text=text))

    for el in soup.select(VIDEO_SELECTOR):
        elements.append(ExtractedElement.from_tag(el, href=el.get("src")))

    for el in soup.select('input:not([type="hidden"]), textarea, select'):
        if el.get("type") in ("submit", "button"):
            continue
        parent = el.find_parent("form")
        parent_form = (parent.get("id") or parent.get("name")) if parent is not None else None
        elements.append(
            ExtractedElement.from_tag(el, placeholder=el.get("placeholder"), parent_form=parent_form)
        )

    return elements
