"""
Revision Page Scraping
=======================
The authenticated revision page (``/D<id>``) carries two things the
Conduit API does not expose:

  - the CSRF token required by the web UI's AJAX endpoints
  - the changeset ``ref`` identifiers the UI uses to address a diff rendering

The same identifier is encoded differently depending on where it was
rendered (server-side markup vs. JavaScript hydration data), so references
are pulled out with a cascade of patterns, strictest first.
"""

import logging
import re

import requests

from config.settings import BROWSER_USER_AGENT, REQUEST_TIMEOUT
from utils.common import build_cookie_header

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
#  Page fetch
# ---------------------------------------------------------------------------

def revision_url(base_url: str, revision_id: int) -> str:
    return f"{base_url.rstrip('/')}/D{revision_id}"


def fetch_revision_page(
    http,
    base_url: str,
    revision_id: int,
    cookies: dict | None = None,
    timeout: float = REQUEST_TIMEOUT,
) -> str | None:
    """GET the revision page with the session cookies attached.

    Returns the HTML, or None if the request fails."""
    headers = {"User-Agent": BROWSER_USER_AGENT}
    if cookies:
        headers["Cookie"] = build_cookie_header(cookies)

    url = revision_url(base_url, revision_id)
    try:
        resp = http.get(url, headers=headers, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.debug("Could not fetch %s: %s", url, e)
        return None
    return resp.text


# ---------------------------------------------------------------------------
#  CSRF token
# ---------------------------------------------------------------------------

_CSRF_PATTERNS = [
    re.compile(r'__csrf__.*?value="([^"]+)"'),   # <input name="__csrf__" value="...">
    re.compile(r'"current":"([^"]+)"'),          # JX config: {"csrf":{"current":"..."}}
]


def extract_csrf_token(html: str) -> str | None:
    """Find the CSRF token in revision page HTML."""
    for pattern in _CSRF_PATTERNS:
        m = pattern.search(html)
        if m:
            return m.group(1)
    return None


def fetch_csrf_token(http, base_url: str, revision_id: int, cookies: dict | None = None,
                     timeout: float = REQUEST_TIMEOUT) -> str | None:
    html = fetch_revision_page(http, base_url, revision_id, cookies, timeout=timeout)
    if html is None:
        return None
    token = extract_csrf_token(html)
    if token is None:
        logger.debug("No CSRF token on the page for D%s", revision_id)
    return token


# ---------------------------------------------------------------------------
#  Changeset references
# ---------------------------------------------------------------------------

MIN_REF_LENGTH = 7

_SIMPLE_REF = re.compile(r"ref=(\d+)")

# Alternate encodings of the same identifier, pooled together
_ENCODED_REFS = [
    re.compile(r'"ref"\s*:\s*"(\d+)"'),          # JSON: "ref":"8450617"
    re.compile(r"'ref'\s*:\s*'(\d+)'"),          # JS:   'ref': '8450617'
    re.compile(r"\bref\s*:\s*'?(\d+)"),          # JS:   ref: '8450617' / ref: 8450617
    re.compile(r"\bC(\d{7,8})OL\d+"),            # HTML id, old side: C8450617OL1
    re.compile(r"\bC(\d{7,8})NL\d+"),            # HTML id, new side: C8450617NL1
]

_BARE_NUMBER = re.compile(r"\b\d{7,8}\b")

# Last stage; any text it matches also matches _SIMPLE_REF, which runs first
_CHANGESET_URL_REF = re.compile(r"differential/changeset/[^?]*\?[^&]*ref=(\d+)")


def _refs_simple(html: str) -> list[str]:
    return _SIMPLE_REF.findall(html)


def _refs_encoded(html: str) -> list[str]:
    refs = []
    for pattern in _ENCODED_REFS:
        refs.extend(v for v in pattern.findall(html) if len(v) >= MIN_REF_LENGTH)
    return refs


def _refs_bare_numbers(html: str) -> list[str]:
    return _BARE_NUMBER.findall(html)


def _refs_changeset_urls(html: str) -> list[str]:
    return _CHANGESET_URL_REF.findall(html)


REFERENCE_CASCADE = [
    ("ref query parameter", _refs_simple),
    ("encoded ref", _refs_encoded),
    ("bare number", _refs_bare_numbers),
    ("changeset url", _refs_changeset_urls),
]


def _dedupe(values) -> list[str]:
    seen = set()
    out = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


def extract_references(html: str) -> list[str]:
    """Extract changeset references from revision page HTML.

    Stages run in order; the first stage that finds anything wins.
    Values are deduplicated in first-seen order.
    """
    for name, stage in REFERENCE_CASCADE:
        refs = _dedupe(stage(html))
        if refs:
            logger.debug("Found %d changeset reference(s) via %s", len(refs), name)
            return refs
    return []


def discover_references(http, base_url: str, revision_id: int, cookies: dict | None = None,
                        timeout: float = REQUEST_TIMEOUT) -> list[str]:
    """Fetch the revision page and extract its changeset references (never raises)."""
    html = fetch_revision_page(http, base_url, revision_id, cookies, timeout=timeout)
    if not html:
        return []
    return extract_references(html)
