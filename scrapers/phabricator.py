"""
Conduit API Client
===================
Thin wrapper over the Phabricator Conduit endpoints used to read a
revision's discussion:

  differential.revision.search  -> PHID of a revision id
  transaction.search            -> comments, inline comments, review actions
  user.search                   -> author display names
  differential.diff.search      -> newest diff of a revision

Every call is a form-encoded POST carrying ``api.token``.
"""

import logging

import requests

from config.settings import API_USER_AGENT, REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

MAX_TRANSACTION_PAGES = 50


class ConduitError(RuntimeError):
    """A Conduit call failed at the HTTP level or returned an error_code."""


def _id_str(value) -> str | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, str)) and str(value):
        return str(value)
    return None


class PhabricatorClient:
    """Conduit client bound to one Phabricator instance and API token."""

    def __init__(self, base_url: str, api_token: str, http=None, context=None,
                 timeout: float = REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.http = http or requests.Session()
        self.timeout = timeout
        # shared with the SessionContext when one is given
        self._user_names = context.user_names if context is not None else {}
        self._transactions: dict[str, list] = {}
        self._revision_phids: dict[int, str] = {}

    # ----- transport --------------------------------------------------------

    def call(self, method: str, params: dict | None = None) -> dict:
        """Call a Conduit method and return its ``result`` payload."""
        url = f"{self.base_url}/api/{method}"
        data = {"api.token": self.api_token}
        data.update(params or {})
        logger.debug("Conduit %s %s", method, {k: v for k, v in data.items() if k != "api.token"})

        try:
            resp = self.http.post(
                url, data=data, headers={"User-Agent": API_USER_AGENT}, timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ConduitError(f"Failed to send request to {url}: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise ConduitError(f"HTTP error {resp.status_code}: {resp.text[:500]}")

        try:
            payload = resp.json()
        except ValueError as e:
            raise ConduitError(f"Failed to parse JSON response from {method}: {resp.text[:500]}") from e

        if payload.get("error_code"):
            raise ConduitError(
                f"API Error: {payload['error_code']} - {payload.get('error_info') or ''}"
            )
        result = payload.get("result")
        if result is None:
            raise ConduitError(f"No result data from {method}")
        return result

    # ----- revisions --------------------------------------------------------

    def get_revision_phid(self, revision_id: int) -> str:
        if revision_id in self._revision_phids:
            return self._revision_phids[revision_id]
        result = self.call("differential.revision.search", {"constraints[ids][0]": str(revision_id)})
        data = result.get("data") or []
        if not data or not data[0].get("phid"):
            raise ConduitError(f"No revision found for D{revision_id}")
        phid = data[0]["phid"]
        self._revision_phids[revision_id] = phid
        return phid

    def get_transactions(self, object_phid: str) -> list[dict]:
        """All transactions of an object, following the ``after`` cursor."""
        if object_phid in self._transactions:
            return self._transactions[object_phid]

        transactions = []
        after = None
        for _ in range(MAX_TRANSACTION_PAGES):
            params = {"objectIdentifier": object_phid}
            if after:
                params["after"] = after
            result = self.call("transaction.search", params)
            transactions.extend(result.get("data") or [])
            after = (result.get("cursor") or {}).get("after")
            if not after:
                break
        else:
            logger.warning("Stopped paging transactions for %s after %d pages",
                           object_phid, MAX_TRANSACTION_PAGES)

        logger.info("Fetched %d transactions for %s", len(transactions), object_phid)
        self._transactions[object_phid] = transactions
        return transactions

    def get_diff_ids_from_transactions(self, revision_id: int) -> list[str]:
        """Diff ids referenced by the revision's transactions, in order."""
        phid = self.get_revision_phid(revision_id)
        ids = []
        for tx in self.get_transactions(phid):
            diff = (tx.get("fields") or {}).get("diff")
            if isinstance(diff, dict):
                diff_id = _id_str(diff.get("id"))
                if diff_id and diff_id not in ids:
                    ids.append(diff_id)
        return ids

    def get_latest_diff_id(self, revision_id: int) -> str | None:
        """Newest diff id of a revision, or None if it cannot be determined."""
        try:
            result = self.call("differential.diff.search", {
                "constraints[revisionIDs][0]": str(revision_id),
                "order": "newest",
                "limit": "1",
            })
        except ConduitError as e:
            logger.debug("differential.diff.search failed for D%s: %s", revision_id, e)
            return None
        data = result.get("data") or []
        return _id_str(data[0].get("id")) if data else None

    # ----- users ------------------------------------------------------------

    def get_user_display_name(self, user_phid: str) -> str:
        """``Real Name (username)`` for a user PHID; falls back to the PHID."""
        if user_phid in self._user_names:
            return self._user_names[user_phid]

        name = user_phid
        try:
            result = self.call("user.search", {"constraints[phids][0]": user_phid})
            data = result.get("data") or []
            if data:
                fields = data[0].get("fields") or {}
                real_name = fields.get("realName") or ""
                username = fields.get("username") or ""
                if real_name and username:
                    name = f"{real_name} ({username})"
                elif real_name or username:
                    name = real_name or username
        except ConduitError as e:
            logger.warning("Failed to fetch user info for %s: %s", user_phid, e)

        self._user_names[user_phid] = name
        return name
