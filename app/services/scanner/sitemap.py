"""Pre-crawl URL discovery from robots.txt and XML sitemaps."""

import asyncio
import gzip
import logging
from dataclasses import dataclass, field
from xml.etree import ElementTree as ET

import httpx

logger = logging.getLogger(__name__)

SITEMAP_NS = {"sm": "http://www.sitemaps.org/schemas/sitemap/0.9"}
SITEMAP_PATHS = ("/sitemap.xml", "/sitemap_index.xml", "/wp-sitemap.xml", "/sitemap-index.xml")
MAX_SUB_SITEMAPS = 5
USER_AGENT = "OneClickTag-Scanner/1.0"


class SitemapParseError(Exception):
    """Sitemap could not be fetched or is not valid sitemap XML."""


@dataclass
class SitemapURL:
    loc: str
    lastmod: str | None = None
    priority: float | None = None
    changefreq: str | None = None


@dataclass
class SitemapResult:
    urls: list[SitemapURL]
    is_index: bool
    child_sitemaps: list[str]


@dataclass
class RobotsInfo:
    sitemaps: list[str] = field(default_factory=list)
    disallowed: list[str] = field(default_factory=list)
    crawl_delay: float | None = None

    @property
    def found(self) -> bool:
        return bool(self.sitemaps or self.disallowed)


@dataclass
class PreCrawlResult:
    urls: list[str]
    sitemap_found: bool
    robots_found: bool
    disallowed: list[str] = field(default_factory=list)
    crawl_delay: float | None = None


def parse_robots_txt(content: str) -> RobotsInfo:
    info = RobotsInfo()
    for raw in content.splitlines():
        line = raw.split("#", 1)[0].strip()
        if ":" not in line:
            continue
        key, value = (part.strip() for part in line.split(":", 1))
        key = key.lower()
        if key == "sitemap" and value:
            info.sitemaps.append(value)
        elif key == "disallow" and value:
            info.disallowed.append(value)
        elif key == "crawl-delay":
            try:
                info.crawl_delay = float(value)
            except ValueError:
                continue
    return info


def _text(element: ET.Element, name: str) -> str | None:
    found = element.find(f"sm:{name}", SITEMAP_NS)
    if found is None:
        found = element.find(name)
    if found is None or not found.text:
        return None
    return found.text.strip()


def parse_sitemap_xml(content: str | bytes) -> SitemapResult:
    """Parse a urlset or sitemapindex document, with or without the sitemap namespace."""
    if isinstance(content, bytes):
        if content[:2] == b"\x1f\x8b":
            try:
                content = gzip.decompress(content)
            except (OSError, EOFError) as e:
                raise SitemapParseError(f"Invalid gzip sitemap: {e}") from e
        content = content.decode("utf-8", errors="replace")
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise SitemapParseError(f"Invalid XML: {e}") from e

    tag = root.tag.lower()
    if "sitemapindex" in tag:
        children = root.findall("sm:sitemap", SITEMAP_NS) or root.findall("sitemap")
        locs = [loc for child in children if (loc := _text(child, "loc"))]
        return SitemapResult(urls=[], is_index=True, child_sitemaps=locs)
    if "urlset" in tag:
        urls: list[SitemapURL] = []
        for element in root.findall("sm:url", SITEMAP_NS) or root.findall("url"):
            loc = _text(element, "loc")
            if not loc:
                continue
            priority = _text(element, "priority")
            try:
                priority_value = float(priority) if priority else None
            except ValueError:
                priority_value = None
            urls.append(
                SitemapURL(
                    loc=loc,
                    lastmod=_text(element, "lastmod"),
                    priority=priority_value,
                    changefreq=_text(element, "changefreq"),
                )
            )
        return SitemapResult(urls=urls, is_index=False, child_sitemaps=[])
    raise SitemapParseError(f"Unknown sitemap root element: {root.tag}")


class SitemapParser:
    """Fetches robots.txt and sitemaps for one domain over a shared client."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def fetch_robots(self, domain: str) -> RobotsInfo:
        try:
            response = await self.client.get(f"https://{domain}/robots.txt")
        except httpx.HTTPError as e:
            logger.info("robots.txt unavailable for %s: %s", domain, e)
            return RobotsInfo()
        if response.status_code >= 400:
            return RobotsInfo()
        return parse_robots_txt(response.text)

    async def fetch_sitemap(self, url: str) -> SitemapResult:
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise SitemapParseError(f"Failed to fetch sitemap: {e}") from e
        if response.status_code >= 400:
            raise SitemapParseError(f"HTTP {response.status_code} for {url}")
        return parse_sitemap_xml(response.content)

    async def collect_urls(self, url: str) -> list[SitemapURL]:
        """URLs from a sitemap, following at most MAX_SUB_SITEMAPS entries of an index."""
        result = await self.fetch_sitemap(url)
        if not result.is_index:
            return result.urls

        urls: list[SitemapURL] = []
        for child in result.child_sitemaps[:MAX_SUB_SITEMAPS]:
            try:
                child_result = await self.fetch_sitemap(child)
            except SitemapParseError as e:
                logger.info("Skipping sub-sitemap %s: %s", child, e)
                continue
            urls.extend(child_result.urls)
        return urls

    async def _collect_or_empty(self, url: str) -> list[SitemapURL]:
        try:
            return await self.collect_urls(url)
        except SitemapParseError as e:
            logger.debug("No sitemap at %s: %s", url, e)
            return []

    async def discover(self, domain: str) -> PreCrawlResult:
        """Merge URLs from robots.txt sitemaps and the well-known sitemap paths.

        Candidates are fetched concurrently; URL order follows candidate order.
        """
        robots = await self.fetch_robots(domain)
        candidates = list(
            dict.fromkeys(robots.sitemaps + [f"https://{domain}{p}" for p in SITEMAP_PATHS])
        )
        results = await asyncio.gather(*(self._collect_or_empty(c) for c in candidates))

        urls: dict[str, None] = {}
        for entries in results:
            for entry in entries:
                urls[entry.loc] = None
        logger.info("Pre-crawl of %s found %d sitemap URLs", domain, len(urls))

        return PreCrawlResult(
            urls=list(urls),
            sitemap_found=any(results),
            robots_found=robots.found,
            disallowed=robots.disallowed,
            crawl_delay=robots.crawl_delay,
        )
