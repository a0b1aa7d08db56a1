"""Shared fixtures: an in-memory HTTP session that never touches the network."""

import json

import pytest
import requests


class FakeResponse:
    def __init__(self, text: str = "", status_code: int = 200):
        self.text = text
        self.status_code = status_code

    def json(self):
        return json.loads(self.text)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeHttp:
    """Records requests and answers them through a handler.

    The handler receives (method, url, kwargs) and returns a FakeResponse,
    a str (200 body), a dict (JSON body) or raises.
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def _send(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        result = self.handler(method, url, kwargs)
        if isinstance(result, FakeResponse):
            return result
        if isinstance(result, dict):
            return FakeResponse(json.dumps(result))
        return FakeResponse(result or "")

    def get(self, url, **kwargs):
        return self._send("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._send("POST", url, **kwargs)

    def posts(self):
        return [c for c in self.calls if c[0] == "POST"]


@pytest.fixture
def make_http():
    return FakeHttp


@pytest.fixture
def response():
    return FakeResponse
