"""
Suggestion Resolution
======================
Entry point used when an inline comment comes back from the API with an
empty body. Chains the web-session steps:

  session cookies -> changeset references -> scored changeset fetch -> parse

and always yields a string: the fenced suggestion, or a placeholder.
"""

import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import requests

from config.settings import DEFAULT_BASE_URL, REQUEST_TIMEOUT, SUGGESTION_PLACEHOLDER
from scrapers.changeset import ChangesetFetcher
from scrapers.credentials import SessionContext
from scrapers.revision_page import discover_references
from scrapers.suggestion_parser import parse_suggestion
from utils.common import notify

logger = logging.getLogger(__name__)


@dataclass
class InlineCommentRequest:
    revision_id: int
    line_number: int        # 0 = unknown, no lookup attempted
    file_path: str
    include_done: bool = False

    def is_resolvable(self) -> bool:
        return self.revision_id > 0 and self.line_number > 0 and bool(self.file_path)


def domain_of(base_url: str) -> str:
    return urlparse(base_url).hostname or urlparse(DEFAULT_BASE_URL).hostname


class SuggestionResolver:
    """Resolves code suggestions of empty inline comments via the web UI.

    One resolver serves a whole run; cookies and other caches live in the
    SessionContext, everything else is rebuilt per comment.
    """

    def __init__(
        self,
        base_url: str,
        http=None,
        context: SessionContext = None,
        client=None,
        progress_callback: callable = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.domain = domain_of(self.base_url)
        self.http = http or requests.Session()
        self.context = context or SessionContext()
        self.timeout = timeout
        self.fetcher = ChangesetFetcher(self.http, self.base_url, client=client, timeout=timeout)
        self._progress_callback = progress_callback

    def _progress(self, message: str):
        notify(self._progress_callback, message)

    def fetch_suggestion(self, request: InlineCommentRequest) -> str | None:
        """Return the fenced suggestion for *request*, or None."""
        if not request.is_resolvable():
            return None

        self._progress(f"Resolving suggestion at {request.file_path}:{request.line_number}")
        cookies = self.context.cookies_for(self.domain)

        references = discover_references(
            self.http, self.base_url, request.revision_id, cookies, timeout=self.timeout,
        )
        if not references:
            logger.info("No changeset references found on D%s", request.revision_id)

        candidate = self.fetcher.fetch_best(request.revision_id, references, cookies)
        if candidate is None:
            logger.info("No changeset with suggestion markup for D%s", request.revision_id)
            return None

        logger.debug("Parsing changeset ref=%s (score %d)", candidate.reference, candidate.score)
        return parse_suggestion(
            candidate.body, request.line_number, request.file_path, request.include_done,
        )

    def resolve(self, request: InlineCommentRequest) -> str:
        """The suggestion text, or the placeholder when none can be recovered."""
        try:
            suggestion = self.fetch_suggestion(request)
        except Exception as e:
            logger.warning(
                "Suggestion lookup failed for %s:%s: %s",
                request.file_path, request.line_number, e,
            )
            suggestion = None
        return suggestion or SUGGESTION_PLACEHOLDER
