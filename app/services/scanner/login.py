"""Login wall detection and form-based login for authenticated crawling."""

import logging
import re
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

_END = r"(?:/|$|\?)"

LOGIN_URL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        rf"/log[-_]?in{_END}",
        rf"/sign[-_]?in{_END}",
        rf"/auth(?:enticate)?{_END}",
        rf"/authorization{_END}",
        rf"/log[-_]?on{_END}",
        rf"/sso{_END}",
        rf"/(?:accounts?|users?|members?|portal|secure|access|auth|admin|administrator)/(?:log[-_]?in|sign[-_]?in){_END}",
        r"/wp-login\.php",
        rf"/wp-admin{_END}",
        r"/customer/account/login",
        rf"/my-account{_END}",
        r"/account/login",
        r"/user/login",
        rf"/users/sign_in{_END}",
        rf"/sessions?/new{_END}",
        rf"/api/auth/signin{_END}",
        r"/auth/realms/[^/]+/protocol/",
        rf"/oauth/authorize{_END}",
        rf"/(?:cas|saml|openid)/login{_END}",
        rf"/adfs/ls{_END}",
        rf"/(?:app|dashboard|panel|console|client)/(?:login|signin){_END}",
        rf"/connexion{_END}",
        rf"/iniciar[-_]?sesion{_END}",
        rf"/acceder{_END}",
        rf"/anmelden{_END}",
        rf"/einloggen{_END}",
        rf"/accedi{_END}",
        rf"/inloggen{_END}",
        rf"/entrar{_END}",
        rf"/logowanie{_END}",
        rf"/giris{_END}",
    )
]

LOGIN_QUERY_PATTERNS = [
    re.compile(r"[?&]action=(log[-_]?in|sign[-_]?in|auth)", re.IGNORECASE),
    re.compile(r"[?&](view|type|page|mode)=(log[-_]?in|sign[-_]?in)", re.IGNORECASE),
]

LOGIN_CONTENT_PATTERN = re.compile(
    r"\b("
    + "|".join(
        [
            r"sign[ -]in",
            r"log[ -]in",
            r"login",
            r"enter your password",
            r"enter your email and password",
            r"forgot (your )?password",
            r"reset password",
            r"remember me",
            r"keep me (signed|logged) in",
            r"don['’]t have an account",
            r"create an account",
            r"welcome back",
            r"username or email",
            r"email or username",
            r"email and password",
            r"username and password",
            r"verification code",
            r"connectez-vous",
            r"se connecter",
            r"iniciar sesi[oó]n",
            r"einloggen",
            r"anmelden",
            r"accedi",
            r"inloggen",
            r"fa[çc]a login",
            r"zaloguj si[eę]",
        ]
    )
    + r")\b",
    re.IGNORECASE,
)

LOGIN_LINK_TEXT_PATTERN = re.compile(
    r"\b(log\s*in|sign\s*in|my\s*account|member\s*login|client\s*login|portal|connexion"
    r"|anmelden|accedi|entrar|iniciar\s*sesi[oó]n|inloggen)\b",
    re.IGNORECASE,
)

LOGIN_LINK_HREF_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"/log[-_]?in",
        r"/sign[-_]?in",
        rf"/auth(?:enticate)?{_END}",
        rf"/sso{_END}",
        r"/wp-login",
        r"/my-account",
        r"/account/login",
        r"/user/login",
        r"/users/sign_in",
        r"/customer/account/login",
        r"/session/new",
        r"/(?:portal|secure|member|admin)/login",
        r"/connexion",
        r"/anmelden",
        r"/iniciar[-_]?sesion",
    )
]

# Used by page classification; matched against the path only.
LOGIN_CLASSIFY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"/log[-_]?in",
        r"/sign[-_]?in",
        r"/auth(?:enticate)?(?:/|$)",
        r"/sso(?:/|$)",
        r"/log[-_]?on",
        r"/wp-login",
        r"/customer/account/login",
        r"/my-account",
        r"/sessions?/new",
        r"/api/auth/signin",
        r"/(?:cas|saml)/login",
        r"/connexion",
        r"/anmelden",
        r"/accedi",
        r"/entrar",
        r"/iniciar[-_]?sesion",
        r"/inloggen",
        r"/logowanie",
        r"/giris",
        r"/entrance",
        r"/enter(?:/|$)",
    )
]

_USERNAME_FIELD = re.compile(r"user|email|login|account|identifier", re.IGNORECASE)


def route_path(url: str) -> tuple[str, str]:
    """(path, query) with ``#/`` client-side routes taking the place of the path."""
    parsed = urlparse(url)
    path = parsed.fragment if parsed.fragment.startswith("/") else parsed.path
    query = f"?{parsed.query}" if parsed.query else ""
    return path, query


def is_login_url(url: str) -> bool:
    path, query = route_path(url)
    full = path + query
    if any(p.search(full) for p in LOGIN_URL_PATTERNS):
        return True
    return any(p.search(query) for p in LOGIN_QUERY_PATTERNS)


def has_login_content(text: str) -> bool:
    return bool(LOGIN_CONTENT_PATTERN.search(text))


def find_password_form(soup: BeautifulSoup) -> Tag | None:
    """First form holding a password input."""
    for form in soup.find_all("form"):
        if form.find("input", attrs={"type": "password"}):
            return form
    return None


def is_login_page(url: str, soup: BeautifulSoup) -> bool:
    """A login URL, or a password form on a page whose text reads like a login."""
    if is_login_url(url):
        return True
    if find_password_form(soup) is None:
        return False
    return has_login_content(soup.get_text(" ", strip=True)[:5000])


def find_login_links(anchors: list[tuple[str, str]], base_url: str) -> list[str]:
    """Absolute URLs of anchors whose href or text points at a login page."""
    found: dict[str, None] = {}
    for href, text in anchors:
        if not href:
            continue
        href_match = any(p.search(href) for p in LOGIN_LINK_HREF_PATTERNS)
        text_match = bool(LOGIN_LINK_TEXT_PATTERN.search(text.strip()))
        if href_match or text_match:
            found[urljoin(base_url, href)] = None
    return list(found)


@dataclass
class LoginResult:
    success: bool
    login_url: str
    cookies: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {"success": self.success, "loginUrl": self.login_url, "error": self.error}


def build_login_form_data(form: Tag, username: str, password: str) -> dict[str, str]:
    """Fill the form's username and password inputs, keeping hidden fields such as CSRF tokens."""
    data: dict[str, str] = {}
    username_set = False
    for field_tag in form.find_all("input"):
        name = field_tag.get("name")
        if not name:
            continue
        input_type = (field_tag.get("type") or "text").lower()
        if input_type == "password":
            data[name] = password
        elif input_type == "hidden":
            data[name] = field_tag.get("value") or ""
        elif input_type in ("email", "text") and not username_set:
            if input_type == "email" or _USERNAME_FIELD.search(name):
                data[name] = username
                username_set = True
        elif input_type in ("checkbox", "radio") and field_tag.has_attr("checked"):
            data[name] = field_tag.get("value") or "on"
    return data


async def form_login(
    client: httpx.AsyncClient, login_url: str, username: str, password: str
) -> LoginResult:
    """Log in by posting the page's password form; the client keeps the session cookies."""
    try:
        response = await client.get(login_url)
    except httpx.HTTPError as e:
        return LoginResult(False, login_url, error=f"Could not load login page: {e}")

    soup = BeautifulSoup(response.text, "html.parser")
    form = find_password_form(soup)
    if form is None:
        return LoginResult(False, login_url, error="No login form found")

    action = urljoin(str(response.url), form.get("action") or str(response.url))
    method = (form.get("method") or "post").lower()
    data = build_login_form_data(form, username, password)

    try:
        if method == "get":
            result = await client.get(action, params=data)
        else:
            result = await client.post(action, data=data)
    except httpx.HTTPError as e:
        return LoginResult(False, login_url, error=f"Login request failed: {e}")

    # Still on a password form means the credentials were refused
    after = BeautifulSoup(result.text, "html.parser")
    if result.status_code >= 400 or find_password_form(after) is not None:
        logger.info("Form login at %s rejected (status %d)", login_url, result.status_code)
        return LoginResult(False, login_url, error="Login rejected")

    cookies = {name: value for name, value in client.cookies.items()}
    logger.info("Form login at %s succeeded with %d cookies", login_url, len(cookies))
    return LoginResult(True, login_url, cookies=cookies)
