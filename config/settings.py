"""
Runtime settings: Phabricator endpoints, cookies, scoring and placeholders.
"""

DEFAULT_BASE_URL = "https://phabricator.services.mozilla.com"

# Environment variables
ENV_COOKIES = "PHABRICATOR_COOKIES"
ENV_TOKEN = "PHABRICATOR_TOKEN"
ENV_BASE_URL = "PHABRICATOR_BASE_URL"
ENV_LOG_LEVEL = "PHAB_LOG_LEVEL"

REQUEST_TIMEOUT = 30  # seconds, per HTTP call

API_USER_AGENT = "phab-comments-to-md/0.1.0 (https://github.com/padenot/phab-comments-to-md)"
BROWSER_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:142.0) Gecko/20100101 Firefox/142.0"

# ---------------------------------------------------------------------------
# Session cookies
# ---------------------------------------------------------------------------

SESSION_COOKIE = "phsid"
USER_COOKIE = "phusr"
REQUIRED_COOKIES = (SESSION_COOKIE, USER_COOKIE)

COOKIE_DB_NAME = "cookies.sqlite"

# ---------------------------------------------------------------------------
# Changeset endpoint
# ---------------------------------------------------------------------------

CHANGESET_PATH = "/differential/changeset/"
PLACEHOLDER_CSRF_TOKEN = "dummy"
JSON_HIJACK_PREFIX = "for (;;);"

# (device, metablock) sent with each changeset request
PRIMARY_RENDERING = ("1up", "7")
FALLBACK_RENDERING = ("2up", "2")

# Response markers, strongest first
SUGGESTION_TEXT_MARKER = "suggestionText"
INLINE_SUGGESTION_MARKER = "inline-suggestion-view"
INLINE_COMMENT_MARKER = "differential-inline-comment"
DONE_MARKER_CLASS = "inline-is-done"

# Tuned against one deployment; only the relative order matters.
SCORE_WEIGHTS = {
    SUGGESTION_TEXT_MARKER: 100,
    INLINE_SUGGESTION_MARKER: 10,
    INLINE_COMMENT_MARKER: 1,
}

# Revision id offsets probed when no changeset reference can be found
PROBE_OFFSETS = (0, 1, 2, -1, -2)

# ---------------------------------------------------------------------------
# Output text
# ---------------------------------------------------------------------------

SUGGESTION_HEADER = "**Suggested changes:**"
SUGGESTION_PLACEHOLDER = (
    "*[Empty inline comment - likely contains a code suggestion "
    "that cannot be extracted via API]*"
)
EMPTY_COMMENT_PLACEHOLDER = "*[Empty comment]*"
NO_TEXT_PLACEHOLDER = "*[No comment text]*"

REVIEW_ACTION_TYPES = ("request-changes", "accept", "reject", "request-review")
