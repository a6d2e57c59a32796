import json
import queue

import pytest
import requests


class FakeResponse:
    def __init__(self, payload=None, content: bytes = b"", status: int = 200):
        self._payload = payload
        self._content = content
        self.status_code = status
        self.headers = {"Content-Length": str(len(content))} if content else {}

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        if isinstance(self._payload, (bytes, str)):
            return json.loads(self._payload)
        return self._payload

    def iter_content(self, chunk_size):
        for i in range(0, len(self._content), chunk_size):
            yield self._content[i:i + chunk_size]


@pytest.fixture
def out_q():
    return queue.Queue()


def drain(q):
    items = []
    while True:
        try:
            items.append(q.get_nowait())
        except queue.Empty:
            return items


def log_texts(q):
    return [m["text"] for m in drain(q) if m.get("type") == "log"]


@pytest.fixture
def no_http(monkeypatch):
    calls = []

    def _fail(*args, **kwargs):
        calls.append((args, kwargs))
        raise AssertionError(f"unexpected HTTP request: {args}")

    monkeypatch.setattr(requests, "get", _fail)
    return calls
