"""
Changeset Fetcher
==================
Calls the web UI's ``/differential/changeset/`` AJAX endpoint for each
candidate reference and keeps the response most likely to hold
suggestion markup.

Candidate sources, in order:
  1. References discovered on the revision page
  2. Diff ids from the revision's transactions (or its newest diff)
  3. Revision ids adjacent to the one being resolved (weak heuristic)
"""

import logging
from dataclasses import dataclass

import requests

from config.settings import (
    BROWSER_USER_AGENT,
    CHANGESET_PATH,
    FALLBACK_RENDERING,
    PLACEHOLDER_CSRF_TOKEN,
    PRIMARY_RENDERING,
    PROBE_OFFSETS,
    REQUEST_TIMEOUT,
    SCORE_WEIGHTS,
)
from scrapers.phabricator import ConduitError
from scrapers.revision_page import fetch_csrf_token
from utils.common import build_cookie_header

logger = logging.getLogger(__name__)


@dataclass
class ChangesetCandidate:
    reference: str
    body: str
    score: int = 0


def score_response(body: str, weights: dict = None) -> int:
    """Rank a changeset response by the suggestion markers it contains."""
    weights = SCORE_WEIGHTS if weights is None else weights
    return sum(weight for marker, weight in weights.items() if marker in body)


def build_headers(base_url: str, revision_id: int, csrf_token: str) -> dict:
    """The header set the web UI sends with changeset requests."""
    return {
        "User-Agent": BROWSER_USER_AGENT,
        "Accept": "*/*",
        "Accept-Language": "en-US,en;q=0.5",
        "Accept-Encoding": "gzip, deflate, br",
        "X-Phabricator-Csrf": csrf_token,
        "X-Phabricator-Via": f"/D{revision_id}",
        "Content-Type": "application/x-www-form-urlencoded",
        "Origin": base_url,
        "Connection": "keep-alive",
        "Sec-Fetch-Dest": "empty",
        "Sec-Fetch-Mode": "cors",
        "Sec-Fetch-Site": "same-origin",
    }


def build_form(reference: str, rendering: tuple = PRIMARY_RENDERING) -> dict:
    device, metablock = rendering
    return {
        "ref": reference,
        "device": device,
        "__wflow__": "true",
        "__ajax__": "true",
        "__metablock__": metablock,
    }


def probe_references(revision_id: int, offsets=PROBE_OFFSETS) -> list[str]:
    """Revision ids near *revision_id*, used as last-resort changeset guesses."""
    return [str(revision_id + off) for off in offsets if revision_id + off > 0]


class ChangesetFetcher:
    """Scored changeset fetching for one Phabricator instance."""

    def __init__(
        self,
        http,
        base_url: str,
        client=None,
        weights: dict = None,
        probe_offsets=PROBE_OFFSETS,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.client = client                # PhabricatorClient, for diff-id fallback
        self.weights = SCORE_WEIGHTS if weights is None else weights
        self.probe_offsets = probe_offsets
        self.timeout = timeout

    # -- single request -----------------------------------------------------

    def fetch_one(self, reference: str, headers: dict, cookies: dict | None = None,
                  rendering: tuple = PRIMARY_RENDERING) -> str | None:
        """POST one changeset request. Returns the body, or None on failure."""
        headers = dict(headers)
        if cookies:
            headers["Cookie"] = build_cookie_header(cookies)
        try:
            resp = self.http.post(
                self.base_url + CHANGESET_PATH,
                data=build_form(reference, rendering),
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.debug("Changeset request for ref=%s failed: %s", reference, e)
            return None
        return resp.text

    # -- scoring loop -------------------------------------------------------

    def best_of(self, references, headers: dict, cookies: dict | None = None,
                rendering: tuple = PRIMARY_RENDERING) -> ChangesetCandidate | None:
        """Fetch every reference and keep the highest-scoring response.

        Only strictly greater scores replace the current best, so ties keep
        the earlier reference and a zero score is never selected."""
        best = None
        for reference in references:
            body = self.fetch_one(reference, headers, cookies, rendering)
            if body is None:
                continue
            score = score_response(body, self.weights)
            logger.debug("ref=%s scored %d", reference, score)
            if score > (best.score if best else 0):
                best = ChangesetCandidate(reference=reference, body=body, score=score)
        return best

    # -- fallbacks ----------------------------------------------------------

    def _diff_id_references(self, revision_id: int) -> list[str]:
        if self.client is None:
            return []
        try:
            ids = self.client.get_diff_ids_from_transactions(revision_id)
            if not ids:
                latest = self.client.get_latest_diff_id(revision_id)
                ids = [latest] if latest else []
        except (ConduitError, requests.RequestException) as e:
            logger.debug("Diff id lookup for D%s failed: %s", revision_id, e)
            return []
        return list(dict.fromkeys(ids))

    # -- public -------------------------------------------------------------

    def fetch_best(self, revision_id: int, references, cookies: dict | None = None,
                   csrf_token: str | None = None) -> ChangesetCandidate | None:
        """Return the best changeset response for a revision, or None."""
        if csrf_token is None:
            csrf_token = fetch_csrf_token(
                self.http, self.base_url, revision_id, cookies, timeout=self.timeout,
            )
        if not csrf_token:
            logger.debug("No CSRF token for D%s, using placeholder", revision_id)
            csrf_token = PLACEHOLDER_CSRF_TOKEN
        headers = build_headers(self.base_url, revision_id, csrf_token)

        references = list(references or [])
        if references:
            best = self.best_of(references, headers, cookies, PRIMARY_RENDERING)
            if best:
                return best
            logger.info("No discovered reference for D%s returned suggestion markup", revision_id)

        diff_refs = self._diff_id_references(revision_id)
        if diff_refs:
            best = self.best_of(diff_refs, headers, cookies, FALLBACK_RENDERING)
            if best:
                return best

        guesses = probe_references(revision_id, self.probe_offsets)
        logger.debug("Probing guessed references for D%s: %s", revision_id, guesses)
        return self.best_of(guesses, headers, cookies, FALLBACK_RENDERING)
