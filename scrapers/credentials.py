"""
Phabricator Session Credentials
================================
Finds an authenticated Phabricator web session (``phsid`` + ``phusr``
cookies) so that the web UI's AJAX endpoints can be called.

Sources, in order:
  1. PHABRICATOR_COOKIES environment variable ("phsid=...; phusr=...")
  2. The cookie store of the most recently used Firefox profile that
     holds both cookies for the target domain

The Firefox store is opened read-only. When Firefox holds a lock on it, the
file is copied into a temporary directory which is removed on every exit path.
"""

import logging
import os
import shutil
import sqlite3
import sys
import tempfile
from pathlib import Path

from config.settings import COOKIE_DB_NAME, ENV_COOKIES, REQUIRED_COOKIES
from utils.common import parse_cookie_string

logger = logging.getLogger(__name__)

_LOCKED_ERRORS = ("database is locked", "database disk image is malformed")


class NoCredentialsError(RuntimeError):
    """No session cookies could be found for a domain."""


def has_required_cookies(cookies: dict) -> bool:
    return all(name in cookies for name in REQUIRED_COOKIES)


# ---------------------------------------------------------------------------
#  Environment override
# ---------------------------------------------------------------------------

def cookies_from_env(environ=None) -> dict | None:
    """Read session cookies from PHABRICATOR_COOKIES.

    Returns None unless both required cookie names are present."""
    environ = os.environ if environ is None else environ
    raw = environ.get(ENV_COOKIES, "")
    if not raw:
        return None
    cookies = parse_cookie_string(raw)
    if not has_required_cookies(cookies):
        logger.debug("%s is set but lacks %s", ENV_COOKIES, " and ".join(REQUIRED_COOKIES))
        return None
    return cookies


# ---------------------------------------------------------------------------
#  Firefox profiles
# ---------------------------------------------------------------------------

def firefox_profile_root(platform: str = None, home: Path = None, environ=None) -> Path:
    """Return the directory holding Firefox profiles on this platform."""
    platform = platform or sys.platform
    home = Path(home) if home else Path.home()
    environ = os.environ if environ is None else environ

    if platform.startswith("win"):
        appdata = environ.get("APPDATA")
        base = Path(appdata) if appdata else home / "AppData" / "Roaming"
        return base / "Mozilla" / "Firefox" / "Profiles"
    if platform == "darwin":
        return home / "Library" / "Application Support" / "Firefox" / "Profiles"
    return home / ".mozilla" / "firefox"


def list_profiles(root: Path) -> list[Path]:
    """Profile directories under *root* holding a cookie store, newest store first."""
    root = Path(root)
    if not root.is_dir():
        return []

    profiles = []
    for entry in root.iterdir():
        db_path = entry / COOKIE_DB_NAME
        if not entry.is_dir() or not db_path.is_file():
            continue
        try:
            mtime = db_path.stat().st_mtime
        except OSError:
            continue
        profiles.append((mtime, entry))

    profiles.sort(key=lambda item: item[0], reverse=True)
    return [path for _, path in profiles]


def _query_cookies(db_path: Path, domain: str) -> dict:
    """Read the required cookies for *domain* from a cookie store, read-only."""
    placeholders = ", ".join("?" for _ in REQUIRED_COOKIES)
    query = (
        "SELECT name, value FROM moz_cookies "
        f"WHERE host LIKE ? AND name IN ({placeholders})"
    )
    conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)
    try:
        rows = conn.execute(query, (f"%{domain}%", *REQUIRED_COOKIES)).fetchall()
    finally:
        conn.close()
    return {name: value for name, value in rows}


def read_profile_cookies(profile_dir: Path, domain: str) -> dict:
    """Read cookies from one profile, falling back to a temporary copy when locked."""
    db_path = Path(profile_dir) / COOKIE_DB_NAME
    try:
        return _query_cookies(db_path, domain)
    except sqlite3.OperationalError as e:
        if not any(marker in str(e) for marker in _LOCKED_ERRORS):
            raise
        logger.debug("Cookie store %s is locked, reading a copy", db_path)

    with tempfile.TemporaryDirectory(prefix="phab-cookies-") as tmp:
        copy_path = Path(tmp) / COOKIE_DB_NAME
        shutil.copy2(db_path, copy_path)
        return _query_cookies(copy_path, domain)


def cookies_from_firefox(domain: str, profile_root: Path = None) -> dict:
    """Find the newest Firefox profile holding both session cookies for *domain*."""
    root = Path(profile_root) if profile_root else firefox_profile_root()
    profiles = list_profiles(root)
    if not profiles:
        raise NoCredentialsError(f"No Firefox profiles with {COOKIE_DB_NAME} found in: {root}")

    for profile in profiles:
        try:
            cookies = read_profile_cookies(profile, domain)
        except (sqlite3.Error, OSError) as e:
            logger.debug("Skipping profile %s: %s", profile.name, e)
            continue
        if has_required_cookies(cookies):
            logger.info("Using Phabricator session from Firefox profile %s", profile.name)
            return cookies

    raise NoCredentialsError(f"No Firefox profile holds Phabricator cookies for {domain}")


def resolve_session_cookies(domain: str, environ=None, profile_root: Path = None) -> dict:
    """Resolve session cookies for *domain*.

    Raises NoCredentialsError when neither the environment nor any
    Firefox profile provides both required cookies.
    """
    cookies = cookies_from_env(environ)
    if cookies:
        return cookies
    return cookies_from_firefox(domain, profile_root=profile_root)


# ---------------------------------------------------------------------------
#  Per-run cache
# ---------------------------------------------------------------------------

class SessionContext:
    """Process-scoped caches for one extraction run.

    Holds session cookies per domain and display names per user PHID.
    Construct a fresh instance per run (or per test).
    """

    def __init__(self, environ=None, profile_root: Path = None):
        self._environ = environ
        self._profile_root = profile_root
        self._cookies: dict[str, dict] = {}
        self.user_names: dict[str, str] = {}

    def cookies_for(self, domain: str) -> dict:
        """Session cookies for *domain*, or an empty dict when unavailable.

        The first lookup result (success or failure) is kept for the run."""
        if domain not in self._cookies:
            try:
                cookies = resolve_session_cookies(
                    domain, environ=self._environ, profile_root=self._profile_root,
                )
            except NoCredentialsError as e:
                logger.warning("Continuing without a web session: %s", e)
                cookies = {}
            self._cookies[domain] = cookies
        return dict(self._cookies[domain])
