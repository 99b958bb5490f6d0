"""Tests for the crawler building blocks: URLs, parsing, login, sitemaps, tech stack, niches."""

import gzip

import httpx
import pytest

from app.models.tracking import TrackingType
from app.services.scanner.crawler import (
    ExtractedElement,
    PageFetcher,
    base_domain,
    classify_page_type,
    detect_template_group,
    extract_interactive_elements,
    extract_priority_elements,
    make_soup,
    normalize_url,
    parse_page,
    should_skip_url,
    url_pattern_for,
)
from app.services.scanner.detector import (
    behavioral_opportunities,
    detect_by_patterns,
    opportunity_key,
    page_view_opportunity,
)
from app.services.scanner.login import (
    build_login_form_data,
    find_login_links,
    find_password_form,
    form_login,
    is_login_page,
    is_login_url,
)
from app.services.scanner.niche import CrawlSummary, NicheDetector, classify_by_patterns
from app.services.scanner.patterns import normalize_niche, patterns_for_niche
from app.services.scanner.selectors import best_selector, generate_selector
from app.services.scanner.sitemap import (
    SitemapParseError,
    SitemapParser,
    parse_robots_txt,
    parse_sitemap_xml,
)
from app.services.scanner.technology import (
    detect_technologies,
    merge_technology_summary,
    technology_list,
)

# ---------------------------------------------------------------------------
# URL hygiene
# ---------------------------------------------------------------------------


class TestUrls:
    def test_normalize_strips_tracking_params_and_slash(self) -> None:
        url = "https://Acme.example/shop/?utm_source=news&id=2#reviews"
        assert normalize_url(url) == "https://acme.example/shop?id=2"

    def test_normalize_keeps_hash_routes(self) -> None:
        assert normalize_url("https://app.example/#/login") == "https://app.example/#/login"

    def test_normalize_rejects_non_http(self) -> None:
        assert normalize_url("mailto:hi@acme.example") is None
        assert normalize_url("ftp://acme.example/file") is None

    def test_base_domain(self) -> None:
        assert base_domain("shop.acme.example") == "acme.example"
        assert base_domain("acme.example") == "acme.example"

    @pytest.mark.parametrize(
        "url",
        [
            "https://acme.example/logo.png",
            "https://acme.example/wp-admin/options.php",
            "https://acme.example/api/v1/items",
            "javascript:void(0)",
        ],
    )
    def test_skipped_urls(self, url: str) -> None:
        assert should_skip_url(url)

    def test_page_is_not_skipped(self) -> None:
        assert not should_skip_url("https://acme.example/pricing")

    @pytest.mark.parametrize(
        ("url", "page_type"),
        [
            ("https://acme.example/", "homepage"),
            ("https://acme.example/checkout", "checkout"),
            ("https://acme.example/cart", "cart"),
            ("https://acme.example/product/blue-shoe", "product"),
            ("https://acme.example/login", "login"),
            ("https://acme.example/signup", "signup"),
            ("https://acme.example/collections/summer", "category"),
            ("https://acme.example/random", "other"),
        ],
    )
    def test_classify_page_type(self, url: str, page_type: str) -> None:
        assert classify_page_type(url) == page_type

    def test_template_group_collapses_ids(self) -> None:
        assert detect_template_group("https://acme.example/product/123") == "/product/{id}"
        assert detect_template_group("https://acme.example/product/456") == "/product/{id}"
        assert detect_template_group("https://acme.example/about") is None

    def test_url_pattern(self) -> None:
        assert url_pattern_for("https://acme.example/orders/42/items") == "/orders/*/items"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

PAGE_HTML = """
<html><head><title>Blue Shoe</title><meta name="description" content="A comfy shoe"></head>
<body><main>
  <h1>Blue Shoe</h1>
  <button id="buy-now" class="btn add-to-cart">Add to cart</button>
  <a href="tel:+15551234">Call us</a>
  <a href="mailto:sales@acme.example?subject=hi">Email</a>
  <a href="/brochure.pdf">Download brochure</a>
  <a href="https://other.example/away">Elsewhere</a>
  <a href="/cart?utm_source=x">Cart</a>
  <iframe src="https://www.youtube.com/embed/abc"></iframe>
  <form id="contact-form" action="/contact"><input name="email" type="email"><button type="submit">Send</button></form>
</main></body></html>
"""


class TestParsePage:
    def test_extracts_structure(self) -> None:
        page = parse_page("https://acme.example/product/blue-shoe", PAGE_HTML, 1)

        assert page.title == "Blue Shoe"
        assert page.meta_tags["description"] == "A comfy shoe"
        assert page.headings[0] == {"level": 1, "text": "Blue Shoe"}
        assert page.page_type == "product"
        assert page.has_form and page.has_cta and page.has_video
        assert page.has_phone_link and page.has_email_link and page.has_download_link
        assert page.links == ["https://acme.example/cart"]

    def test_priority_elements(self) -> None:
        soup = make_soup(PAGE_HTML)
        found = extract_priority_elements("https://acme.example/p", soup)

        assert found["forms"] == [{"url": "https://acme.example/p", "type": "contact", "selector": "#contact-form"}]
        assert found["phoneLinks"] == [{"url": "https://acme.example/p", "number": "+15551234"}]
        assert found["emailLinks"] == [{"url": "https://acme.example/p", "email": "sales@acme.example"}]
        assert found["videoEmbeds"] == [{"url": "https://acme.example/p", "platform": "YouTube"}]
        assert any(c["selector"] == "#buy-now" for c in found["ctas"])

    def test_interactive_elements(self) -> None:
        elements = extract_interactive_elements(make_soup(PAGE_HTML))
        tags = [e.tag_name for e in elements]

        assert tags[0] == "button"
        assert "form" in tags and "iframe" in tags
        email_input = next(e for e in elements if e.tag_name == "input")
        assert email_input.parent_form == "contact-form"


# ---------------------------------------------------------------------------
# Selectors and detection
# ---------------------------------------------------------------------------


class TestSelectors:
    def test_id_wins(self) -> None:
        element = ExtractedElement(tag_name="button", id="buy-now", class_name="btn add-to-cart", text="Add")
        config = generate_selector(element)
        assert best_selector(config) == ("#buy-now", 0.95)

    def test_generic_classes_are_ignored(self) -> None:
        element = ExtractedElement(tag_name="button", class_name="container mt-4 add-to-cart")
        assert best_selector(generate_selector(element)) == ("button.add-to-cart", 0.7)

    def test_structural_fallback_for_tel_links(self) -> None:
        element = ExtractedElement(tag_name="a", href="tel:+15551234")
        assert best_selector(generate_selector(element)) == ('a[href^="tel:"]', 0.4)

    def test_text_fallback(self) -> None:
        element = ExtractedElement(tag_name="span", text="Buy")
        assert best_selector(generate_selector(element)) == ('span:contains("Buy")', 0.3)


class TestDetector:
    def test_ecommerce_patterns_find_add_to_cart(self) -> None:
        soup = make_soup(PAGE_HTML)
        page = parse_page("https://acme.example/product/blue-shoe", PAGE_HTML, 1, soup)
        opportunities = detect_by_patterns(page, extract_interactive_elements(soup), patterns_for_niche("e-commerce"))

        by_type = {o.tracking_type: o for o in opportunities}
        assert by_type[TrackingType.ADD_TO_CART].selector == "#buy-now"
        assert by_type[TrackingType.PHONE_CALL_CLICK].selector == 'a[href^="tel:"]'
        assert TrackingType.PRODUCT_VIEW in by_type

    def test_one_opportunity_per_pattern(self) -> None:
        html = '<button class="add-to-cart">Add to cart</button><button class="other">Add to cart</button>'
        soup = make_soup(html)
        page = parse_page("https://acme.example/product/p", html, 1, soup)
        opportunities = detect_by_patterns(page, extract_interactive_elements(soup), patterns_for_niche("e-commerce"))
        assert sum(o.tracking_type == TrackingType.ADD_TO_CART for o in opportunities) == 1

    def test_page_view_only_for_funnel_pages(self) -> None:
        assert page_view_opportunity("https://acme.example/checkout", "checkout") is not None
        assert page_view_opportunity("https://acme.example/about", "about") is None

    def test_behavioral_keys_ignore_page(self) -> None:
        first = behavioral_opportunities("e-commerce", "https://acme.example/")
        second = behavioral_opportunities("e-commerce", "https://www.acme.example/")
        assert first
        assert [opportunity_key(o) for o in first] == [opportunity_key(o) for o in second]


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

LOGIN_HTML = """
<html><body><h1>Sign in to your account</h1>
<form action="/session" method="post">
  <input type="hidden" name="csrf" value="tok123">
  <input type="email" name="user_email">
  <input type="password" name="pass">
  <input type="checkbox" name="remember" checked>
</form></body></html>
"""


class TestLogin:
    def test_login_urls(self) -> None:
        assert is_login_url("https://acme.example/login")
        assert is_login_url("https://acme.example/users/sign_in")
        assert is_login_url("https://app.example/#/signin")
        assert not is_login_url("https://acme.example/blog/logging-best-practices")

    def test_login_page_by_form_and_text(self) -> None:
        assert is_login_page("https://acme.example/portal-home", make_soup(LOGIN_HTML))

    def test_find_login_links(self) -> None:
        anchors = [("/my-account", "Account"), ("/about", "About"), ("/x", "Log in")]
        assert find_login_links(anchors, "https://acme.example/") == [
            "https://acme.example/my-account",
            "https://acme.example/x",
        ]

    def test_form_data_keeps_hidden_fields(self) -> None:
        form = find_password_form(make_soup(LOGIN_HTML))
        assert form is not None
        assert build_login_form_data(form, "me@acme.example", "s3cret") == {
            "csrf": "tok123",
            "user_email": "me@acme.example",
            "pass": "s3cret",
            "remember": "on",
        }

    async def test_form_login_success(self) -> None:
        posted: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, html=LOGIN_HTML)
            posted.update(dict(httpx.QueryParams(request.content.decode())))
            return httpx.Response(
                200, html="<p>Welcome back</p>", headers={"set-cookie": "sid=abc; Path=/"}
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await form_login(client, "https://acme.example/login", "me@acme.example", "s3cret")

        assert result.success
        assert result.cookies == {"sid": "abc"}
        assert posted["csrf"] == "tok123"
        assert posted["pass"] == "s3cret"

    async def test_form_login_rejected(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, html=LOGIN_HTML)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await form_login(client, "https://acme.example/login", "me", "wrong")

        assert not result.success
        assert result.error == "Login rejected"

    async def test_no_form(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, html="<p>nothing here</p>")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await form_login(client, "https://acme.example/login", "me", "pw")
        assert result.error == "No login form found"


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


class TestPageFetcher:
    async def test_fetch_html_and_reject_others(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/":
                return httpx.Response(200, html="<p>hi</p>", headers={"server": "nginx"})
            if request.url.path == "/data":
                return httpx.Response(200, json={"a": 1})
            return httpx.Response(500)

        async with PageFetcher(transport=httpx.MockTransport(handler)) as fetcher:
            page = await fetcher.fetch("https://acme.example/")
            assert page is not None
            assert page.html == "<p>hi</p>"
            assert page.headers["server"] == "nginx"
            assert await fetcher.fetch("https://acme.example/data") is None
            assert await fetcher.fetch("https://acme.example/broken") is None


# ---------------------------------------------------------------------------
# Sitemaps
# ---------------------------------------------------------------------------

URLSET = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://acme.example/</loc><priority>1.0</priority></url>
  <url><loc>https://acme.example/pricing</loc><lastmod>2024-01-01</lastmod></url>
</urlset>"""

INDEX = """<?xml version="1.0" encoding="UTF-8"?>
<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <sitemap><loc>https://acme.example/sitemap-pages.xml</loc></sitemap>
</sitemapindex>"""


class TestSitemap:
    def test_robots(self) -> None:
        info = parse_robots_txt(
            "User-agent: *\nDisallow: /admin\nCrawl-delay: 2\nSitemap: https://acme.example/s.xml # main\n"
        )
        assert info.sitemaps == ["https://acme.example/s.xml"]
        assert info.disallowed == ["/admin"]
        assert info.crawl_delay == 2.0
        assert info.found

    def test_urlset(self) -> None:
        result = parse_sitemap_xml(URLSET)
        assert not result.is_index
        assert [u.loc for u in result.urls] == ["https://acme.example/", "https://acme.example/pricing"]
        assert result.urls[0].priority == 1.0
        assert result.urls[1].lastmod == "2024-01-01"

    def test_gzip_and_index(self) -> None:
        result = parse_sitemap_xml(gzip.compress(INDEX.encode()))
        assert result.is_index
        assert result.child_sitemaps == ["https://acme.example/sitemap-pages.xml"]

    def test_invalid_xml(self) -> None:
        with pytest.raises(SitemapParseError):
            parse_sitemap_xml("<html>not a sitemap")
        with pytest.raises(SitemapParseError):
            parse_sitemap_xml("<feed></feed>")

    async def test_discover_follows_robots_and_index(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            match request.url.path:
                case "/robots.txt":
                    return httpx.Response(200, text="Sitemap: https://acme.example/custom-index.xml\n")
                case "/custom-index.xml":
                    return httpx.Response(200, text=INDEX)
                case "/sitemap-pages.xml" | "/sitemap.xml":
                    return httpx.Response(200, text=URLSET)
                case _:
                    return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await SitemapParser(client).discover("acme.example")

        assert result.robots_found
        assert result.sitemap_found
        assert result.urls == ["https://acme.example/", "https://acme.example/pricing"]


# ---------------------------------------------------------------------------
# Technology
# ---------------------------------------------------------------------------


class TestTechnology:
    def test_wordpress_with_tracking(self) -> None:
        html = (
            '<link href="/wp-content/themes/x.css"><meta name="generator" content="WordPress 6.4.2">'
            '<script src="https://www.googletagmanager.com/gtm.js?id=GTM-ABC123"></script>'
            '<script src="https://connect.facebook.net/en_US/fbevents.js"></script>'
        )
        report = detect_technologies(html, {"Server": "nginx/1.25", "CF-Ray": "abc"})

        assert report.has("WordPress")
        assert report.technologies[0].version == "6.4.2"
        summary = report.summary()
        assert summary["cms"] == "WordPress"
        assert summary["cdn"] == "Nginx"
        assert summary["analytics"] == ["Google Tag Manager", "Facebook Pixel"]
        assert report.tracking_dicts()[0] == {
            "type": "tag_manager",
            "provider": "Google Tag Manager",
            "details": "GTM-ABC123",
        }

    def test_merge_keeps_first_and_accumulates_analytics(self) -> None:
        merged = merge_technology_summary(
            {"cms": "Shopify", "analytics": ["Hotjar"]},
            {"cms": "WordPress", "framework": "React", "analytics": ["Hotjar", "Segment"]},
        )
        assert merged["cms"] == "Shopify"
        assert merged["framework"] == "React"
        assert merged["analytics"] == ["Hotjar", "Segment"]
        assert {t["name"] for t in technology_list(merged)} == {"Shopify", "React", "Hotjar", "Segment"}


# ---------------------------------------------------------------------------
# Niche
# ---------------------------------------------------------------------------


class TestNiche:
    def test_shop_classifies_as_ecommerce(self) -> None:
        summary = CrawlSummary(
            website_url="https://acme.example/",
            total_pages=12,
            page_types={"product": 6, "cart": 1, "checkout": 1},
            url_patterns=["/product/*", "/cart", "/checkout", "/collections/summer"],
            title="Acme Shop",
            key_content="Free shipping on all orders. Add to cart and checkout securely.",
            technologies=[{"name": "Shopify", "category": "cms", "confidence": 1.0}],
        )
        analysis = classify_by_patterns(summary)
        assert analysis.niche == "e-commerce"
        assert 0.4 <= analysis.confidence <= 0.95
        assert not analysis.ai_used

    def test_empty_site_is_other(self) -> None:
        summary = CrawlSummary(website_url="https://x.example/", total_pages=1, page_types={}, url_patterns=[])
        assert classify_by_patterns(summary).niche == "other"

    async def test_detector_without_ai_uses_patterns(self) -> None:
        summary = CrawlSummary(website_url="https://x.example/", total_pages=1, page_types={}, url_patterns=[])
        detector = NicheDetector(client=None)
        detector.client = None
        result = await detector.detect(summary)
        assert result.niche == "other"

    def test_aliases(self) -> None:
        assert normalize_niche("ecommerce") == "e-commerce"
        assert normalize_niche("lead_generation") == "lead-generation"
        assert normalize_niche(None) is None
