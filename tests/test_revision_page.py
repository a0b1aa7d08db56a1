"""Tests for scrapers/revision_page.py."""

import pytest
import requests

BASE = "https://phab.example.org"


class TestExtractCsrfToken:
    def test_hidden_field(self):
        from scrapers.revision_page import extract_csrf_token

        html = '<form><input type="hidden" name="__csrf__" value="B@abc123" /></form>'
        assert extract_csrf_token(html) == "B@abc123"

    def test_json_literal(self):
        from scrapers.revision_page import extract_csrf_token

        html = '<script>JX.Stratcom.mergeData(0, {"csrf":{"current":"B@json456"}});</script>'
        assert extract_csrf_token(html) == "B@json456"

    def test_hidden_field_has_priority(self):
        from scrapers.revision_page import extract_csrf_token

        html = '{"current":"from-json"} <input name="__csrf__" value="from-field">'
        assert extract_csrf_token(html) == "from-field"

    def test_missing(self):
        from scrapers.revision_page import extract_csrf_token

        assert extract_csrf_token("<html></html>") is None


class TestExtractReferences:
    def test_simple_ref_parameters(self):
        from scrapers.revision_page import extract_references

        html = '<a href="/differential/changeset/?ref=111">a</a> <a href="?ref=222">b</a> ref=111'
        assert extract_references(html) == ["111", "222"]

    @pytest.mark.parametrize("html", [
        '<script>{"ref":"8450617","device":"2up"}</script>',
        "<script>load({'ref': '8450617'})</script>",
        "<script>load({ref: '8450617'})</script>",
        "<script>load({ref: 8450617})</script>",
        '<td id="C8450617OL12" class="old">x</td>',
        '<td id="C8450617NL3" class="new">y</td>',
    ])
    def test_each_encoding_alone(self, html):
        from scrapers.revision_page import extract_references

        assert extract_references(html) == ["8450617"]

    def test_encodings_are_pooled_in_pattern_order(self):
        from scrapers.revision_page import extract_references

        html = (
            '<td id="C7777777NL1"></td>'
            '<td id="C6666666OL1"></td>'
            '{"ref":"5555555"}'
            "{'ref': '4444444'}"
        )
        assert extract_references(html) == ["5555555", "4444444", "6666666", "7777777"]

    def test_short_encoded_values_are_dropped(self):
        from scrapers.revision_page import _refs_encoded

        assert _refs_encoded('{"ref":"123"} {"ref":"1234567"}') == ["1234567"]

    def test_bare_numbers_are_last_resort(self):
        from scrapers.revision_page import extract_references

        html = "<div data-x='12345678'>1234</div><span>7654321</span> 123456789"
        assert extract_references(html) == ["12345678", "7654321"]

    def test_earlier_stage_stops_cascade(self):
        from scrapers.revision_page import extract_references

        html = '?ref=42 {"ref":"8450617"} 99999999'
        assert extract_references(html) == ["42"]

    def test_changeset_url_pattern(self):
        from scrapers.revision_page import _refs_changeset_urls

        html = "/differential/changeset/?view=new&ref=31337"
        assert _refs_changeset_urls("/differential/changeset/?ref=31337") == ["31337"]
        assert _refs_changeset_urls(html) == []

    def test_nothing_found(self):
        from scrapers.revision_page import extract_references

        assert extract_references("<html>no refs here</html>") == []


class TestFetching:
    def test_page_request_carries_cookies(self, make_http):
        from scrapers.revision_page import fetch_revision_page

        http = make_http(lambda method, url, kw: "<html>page</html>")
        html = fetch_revision_page(http, BASE + "/", 123, {"phsid": "s", "phusr": "u"})

        assert html == "<html>page</html>"
        method, url, kwargs = http.calls[0]
        assert (method, url) == ("GET", BASE + "/D123")
        assert kwargs["headers"]["Cookie"] == "phsid=s; phusr=u"
        assert kwargs["timeout"] > 0

    def test_no_cookie_header_without_session(self, make_http):
        from scrapers.revision_page import fetch_revision_page

        http = make_http(lambda method, url, kw: "ok")
        fetch_revision_page(http, BASE, 1, {})
        assert "Cookie" not in http.calls[0][2]["headers"]

    def test_fetch_token(self, make_http):
        from scrapers.revision_page import fetch_csrf_token

        http = make_http(lambda method, url, kw: '<input name="__csrf__" value="tok">')
        assert fetch_csrf_token(http, BASE, 5, {}) == "tok"

    def test_request_failure_is_not_fatal(self, make_http, response):
        from scrapers.revision_page import discover_references, fetch_csrf_token

        def boom(method, url, kw):
            raise requests.ConnectionError("down")

        assert discover_references(make_http(boom), BASE, 5, {}) == []
        assert fetch_csrf_token(make_http(boom), BASE, 5, {}) is None
        forbidden = make_http(lambda method, url, kw: response("ref=1234567", status_code=403))
        assert discover_references(forbidden, BASE, 5, {}) == []

    def test_discover_references(self, make_http):
        from scrapers.revision_page import discover_references

        http = make_http(lambda method, url, kw: '<a href="?ref=8450617">x</a>')
        assert discover_references(http, BASE, 5, {"phsid": "s", "phusr": "u"}) == ["8450617"]
