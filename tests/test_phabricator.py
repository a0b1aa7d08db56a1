"""Tests for scrapers/phabricator.py."""

import pytest
import requests

BASE = "https://phab.example.org"


def conduit(results: dict):
    """Handler answering each Conduit method from *results* (value or callable)."""
    def handler(method, url, kw):
        name = url.rsplit("/", 1)[-1]
        value = results[name]
        if callable(value):
            value = value(kw["data"])
        if isinstance(value, Exception):
            raise value
        return value
    return handler


class TestCall:
    def test_token_and_params_are_posted(self, make_http):
        from scrapers.phabricator import PhabricatorClient

        http = make_http(conduit({"user.whoami": {"result": {"userName": "alice"}}}))
        client = PhabricatorClient(BASE + "/", "api-secret", http=http)

        assert client.call("user.whoami", {"x": "1"}) == {"userName": "alice"}
        method, url, kw = http.calls[0]
        assert (method, url) == ("POST", BASE + "/api/user.whoami")
        assert kw["data"] == {"api.token": "api-secret", "x": "1"}

    def test_error_code(self, make_http):
        from scrapers.phabricator import ConduitError, PhabricatorClient

        http = make_http(conduit({"user.whoami": {
            "result": None, "error_code": "ERR-INVALID-AUTH", "error_info": "bad token",
        }}))
        with pytest.raises(ConduitError, match="ERR-INVALID-AUTH - bad token"):
            PhabricatorClient(BASE, "t", http=http).call("user.whoami")

    @pytest.mark.parametrize("answer", [
        requests.ConnectionError("down"),
        "<html>not json</html>",
        {"result": None},
    ])
    def test_transport_failures(self, make_http, answer):
        from scrapers.phabricator import ConduitError, PhabricatorClient

        http = make_http(conduit({"user.whoami": answer}))
        with pytest.raises(ConduitError):
            PhabricatorClient(BASE, "t", http=http).call("user.whoami")

    def test_http_status(self, make_http, response):
        from scrapers.phabricator import ConduitError, PhabricatorClient

        http = make_http(conduit({"user.whoami": response("denied", status_code=403)}))
        with pytest.raises(ConduitError, match="HTTP error 403"):
            PhabricatorClient(BASE, "t", http=http).call("user.whoami")


class TestRevisions:
    def test_revision_phid_is_cached(self, make_http):
        from scrapers.phabricator import PhabricatorClient

        http = make_http(conduit({
            "differential.revision.search": {"result": {"data": [{"id": 42, "phid": "PHID-DREV-1"}]}},
        }))
        client = PhabricatorClient(BASE, "t", http=http)

        assert client.get_revision_phid(42) == "PHID-DREV-1"
        assert client.get_revision_phid(42) == "PHID-DREV-1"
        assert len(http.calls) == 1
        assert http.calls[0][2]["data"]["constraints[ids][0]"] == "42"

    def test_missing_revision(self, make_http):
        from scrapers.phabricator import ConduitError, PhabricatorClient

        http = make_http(conduit({"differential.revision.search": {"result": {"data": []}}}))
        with pytest.raises(ConduitError, match="D42"):
            PhabricatorClient(BASE, "t", http=http).get_revision_phid(42)

    def test_transactions_follow_cursor(self, make_http):
        from scrapers.phabricator import PhabricatorClient

        def pages(data):
            if data.get("after") == "c1":
                return {"result": {"data": [{"id": 2}], "cursor": {"after": None}}}
            return {"result": {"data": [{"id": 1}], "cursor": {"after": "c1"}}}

        http = make_http(conduit({"transaction.search": pages}))
        client = PhabricatorClient(BASE, "t", http=http)

        assert [tx["id"] for tx in client.get_transactions("PHID-DREV-1")] == [1, 2]
        assert http.calls[0][2]["data"]["objectIdentifier"] == "PHID-DREV-1"
        client.get_transactions("PHID-DREV-1")
        assert len(http.calls) == 2

    def test_diff_ids_from_transactions(self, make_http):
        from scrapers.phabricator import PhabricatorClient

        http = make_http(conduit({
            "differential.revision.search": {"result": {"data": [{"phid": "PHID-DREV-1"}]}},
            "transaction.search": {"result": {"data": [
                {"fields": {"diff": {"id": 900}}},
                {"fields": {}},
                {"fields": {"diff": {"id": "901"}}},
                {"fields": {"diff": {"id": 900}}},
                {"fields": {"diff": {"id": True}}},
            ], "cursor": {}}},
        }))
        assert PhabricatorClient(BASE, "t", http=http).get_diff_ids_from_transactions(42) == ["900", "901"]

    def test_latest_diff_id(self, make_http):
        from scrapers.phabricator import PhabricatorClient

        http = make_http(conduit({"differential.diff.search": {"result": {"data": [{"id": 777}]}}}))
        assert PhabricatorClient(BASE, "t", http=http).get_latest_diff_id(42) == "777"
        data = http.calls[0][2]["data"]
        assert data["constraints[revisionIDs][0]"] == "42"
        assert data["order"] == "newest"

    def test_latest_diff_id_absent(self, make_http):
        from scrapers.phabricator import PhabricatorClient

        empty = make_http(conduit({"differential.diff.search": {"result": {"data": []}}}))
        failing = make_http(conduit({"differential.diff.search": {"error_code": "ERR", "result": None}}))
        assert PhabricatorClient(BASE, "t", http=empty).get_latest_diff_id(42) is None
        assert PhabricatorClient(BASE, "t", http=failing).get_latest_diff_id(42) is None


class TestUserDisplayName:
    @pytest.mark.parametrize("fields, expected", [
        ({"realName": "Alice Smith", "username": "alice"}, "Alice Smith (alice)"),
        ({"realName": "Alice Smith", "username": ""}, "Alice Smith"),
        ({"username": "alice"}, "alice"),
        ({}, "PHID-USER-1"),
    ])
    def test_formats(self, make_http, fields, expected):
        from scrapers.phabricator import PhabricatorClient

        http = make_http(conduit({"user.search": {"result": {"data": [{"fields": fields}]}}}))
        assert PhabricatorClient(BASE, "t", http=http).get_user_display_name("PHID-USER-1") == expected

    def test_failure_falls_back_to_phid(self, make_http):
        from scrapers.phabricator import PhabricatorClient

        http = make_http(conduit({"user.search": requests.Timeout("slow")}))
        assert PhabricatorClient(BASE, "t", http=http).get_user_display_name("PHID-USER-1") == "PHID-USER-1"

    def test_names_are_cached_in_context(self, make_http):
        from scrapers.credentials import SessionContext
        from scrapers.phabricator import PhabricatorClient

        http = make_http(conduit({"user.search": {
            "result": {"data": [{"fields": {"realName": "Bob", "username": "bob"}}]},
        }}))
        context = SessionContext(environ={})
        client = PhabricatorClient(BASE, "t", http=http, context=context)

        client.get_user_display_name("PHID-USER-2")
        client.get_user_display_name("PHID-USER-2")
        assert len(http.calls) == 1
        assert context.user_names["PHID-USER-2"] == "Bob (bob)"
