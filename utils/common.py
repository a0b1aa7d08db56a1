"""
Shared utilities for the Phabricator comment extractor.
"""

import re
from datetime import datetime, timezone

from config.settings import JSON_HIJACK_PREFIX, SUGGESTION_HEADER


def parse_cookie_string(cookie_string: str) -> dict:
    """Parse a ``name=value; name2=value2`` string into a dict.

    Pairs may come in any order and carry surrounding whitespace.
    Fragments without ``=`` are ignored."""
    cookies = {}
    for pair in cookie_string.split(";"):
        pair = pair.strip()
        if not pair or "=" not in pair:
            continue
        name, value = pair.split("=", 1)
        name = name.strip()
        if name:
            cookies[name] = value.strip()
    return cookies


def build_cookie_header(cookies: dict) -> str:
    """Join cookies into a single ``Cookie`` header value."""
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


def strip_json_prefix(body: str) -> str:
    """Remove Phabricator's ``for (;;);`` anti-hijacking prefix, if present."""
    if body.startswith(JSON_HIJACK_PREFIX):
        return body[len(JSON_HIJACK_PREFIX):]
    return body


# Escape sequence (without its backslash) -> decoded text
_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "u003e": ">",
    "u003c": "<",
    "/": "/",
    '"': '"',
    "\\": "\\",
}

_ESCAPE_RE = re.compile(r'\\(u003[ce]|[nt/"\\])')


def unescape_text(text: str) -> str:
    """Resolve the textual escape sequences Phabricator leaves in suggestion text.

    Decoded in a single pass, so an escaped backslash followed by ``n``
    stays a backslash and an ``n``."""
    return _ESCAPE_RE.sub(lambda m: _ESCAPES[m.group(1)], text)


def fence_diff(lines) -> str:
    """Wrap diff lines (a string or an iterable of lines) as a suggestion block."""
    body = lines if isinstance(lines, str) else "\n".join(lines)
    return f"{SUGGESTION_HEADER}\n\n```diff\n{body}\n```"


def format_timestamp(ts) -> str:
    """Format a unix timestamp as ``YYYY-MM-DD HH:MM:SS`` (UTC)."""
    try:
        dt = datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        dt = datetime.fromtimestamp(0, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def notify(progress_callback, message: str):
    """Send a progress message via the callback (if provided)."""
    if progress_callback:
        try:
            progress_callback(message)
        except Exception:
            pass
