import gzip
from typing import List
from urllib.parse import parse_qs

import httpx
import pytest
from analytics_proxy.analytics.dispatcher import Dispatcher
from analytics_proxy.main import create_app
from analytics_proxy.proxy.server import build_upstream_url, filter_headers
from analytics_proxy.settings import Settings
from fastapi.testclient import TestClient

from tests.helpers.asgi import StubCollector

HTML = b"<html><head><title>Upstream Page</title></head><body>Hi</body></html>"


class StubUpstream:
    """Plays the part of the proxied origin. Builds a fresh response for every request."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.error = None
        self.reply(200, headers={"content-type": "text/html; charset=utf-8"}, content=HTML)

    def reply(self, status_code: int, **kwargs) -> None:
        self._status_code = status_code
        self._kwargs = kwargs

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self._status_code, **self._kwargs)


@pytest.fixture
def upstream() -> StubUpstream:
    return StubUpstream()


@pytest.fixture
def proxy_env(monkeypatch):
    monkeypatch.setenv("UPSTREAM_ENDPOINT", "http://upstream.test/base")
    monkeypatch.setenv("GOOGLE_ANALYTICS_TRACKING_ID", "UA-123456789-1")
    monkeypatch.setenv("GOOGLE_ANALYTICS_PROPERTY_NAME", "example.com")


@pytest.fixture
def app_dispatcher(proxy_env, collector: StubCollector) -> Dispatcher:
    return Dispatcher.from_config(
        Settings().get_tracker_config(),
        client=httpx.AsyncClient(transport=collector.transport),
    )


@pytest.fixture
def client(proxy_env, upstream: StubUpstream, app_dispatcher: Dispatcher):
    """TestClient for the full app, with the upstream and the collector stubbed out."""
    app = create_app(Settings(), dispatcher=app_dispatcher)
    with TestClient(app) as test_client:
        dependencies = app.state.dependencies
        test_client.portal.call(dependencies.http_client.aclose)
        dependencies.http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
        yield test_client


def _hits(client: TestClient, dispatcher: Dispatcher, collector: StubCollector) -> List[dict]:
    client.portal.call(dispatcher.drain)
    return [{k: v[0] for k, v in parse_qs(r.content.decode(), keep_blank_values=True).items()} for r in collector.requests]


# --- URL and header helpers ---


@pytest.mark.parametrize(
    "endpoint,path,query,expected",
    [
        ("http://upstream.test", "/page", "", "http://upstream.test/page"),
        ("http://upstream.test/", "/page", "a=1", "http://upstream.test/page?a=1"),
        ("http://upstream.test/base", "/page", "", "http://upstream.test/base/page"),
        ("http://upstream.test/base/", "/", "", "http://upstream.test/base/"),
        ("http://upstream.test/base?key=k", "/page", "a=1", "http://upstream.test/base/page?key=k&a=1"),
        ("https://upstream.test:8443", "/a%20b", "", "https://upstream.test:8443/a%20b"),
    ],
)
def test_build_upstream_url(endpoint, path, query, expected):
    assert build_upstream_url(endpoint, path, query) == expected


def test_filter_headers_removes_hop_by_hop_and_connection_tokens():
    headers = [
        (b"Connection", b"close, X-Session-Hop"),
        (b"X-Session-Hop", b"1"),
        (b"Transfer-Encoding", b"chunked"),
        (b"Content-Type", b"text/html"),
        (b"Set-Cookie", b"a=1"),
        (b"Set-Cookie", b"b=2"),
    ]

    assert filter_headers(headers) == [
        (b"content-type", b"text/html"),
        (b"set-cookie", b"a=1"),
        (b"set-cookie", b"b=2"),
    ]


def test_filter_headers_extra_drop():
    headers = [(b"host", b"proxy.test"), (b"accept", b"*/*")]

    assert filter_headers(headers, drop=("host",)) == [(b"accept", b"*/*")]


# --- End to end through the app ---


def test_proxy_relays_request_and_response(client: TestClient, upstream: StubUpstream):
    response = client.get("/page?x=1", headers={"Accept": "text/html"})

    assert response.status_code == 200
    assert response.content == HTML
    assert len(upstream.requests) == 1
    forwarded = upstream.requests[0]
    assert str(forwarded.url) == "http://upstream.test/base/page?x=1"
    assert forwarded.method == "GET"
    assert forwarded.headers["host"] == "example.com"
    assert forwarded.headers["accept"] == "text/html"
    assert forwarded.headers["x-forwarded-for"] == "testclient"


def test_proxy_uses_configured_upstream_hostname(monkeypatch, client: TestClient, upstream: StubUpstream):
    monkeypatch.setenv("UPSTREAM_HOSTNAME", "origin.internal")

    client.get("/")

    assert upstream.requests[0].headers["host"] == "origin.internal"


def test_proxy_appends_to_forwarded_for(client: TestClient, upstream: StubUpstream):
    client.get("/", headers={"X-Forwarded-For": "198.51.100.1"})

    assert upstream.requests[0].headers["x-forwarded-for"] == "198.51.100.1, testclient"


def test_proxy_forwards_request_body(client: TestClient, upstream: StubUpstream):
    upstream.reply(201, json={"ok": True})

    response = client.post("/form", content=b"name=value", headers={"Content-Type": "application/x-www-form-urlencoded"})

    assert response.status_code == 201
    assert response.json() == {"ok": True}
    assert upstream.requests[0].method == "POST"
    assert upstream.requests[0].content == b"name=value"


def test_proxy_strips_hop_by_hop_response_headers(client: TestClient, upstream: StubUpstream):
    upstream.reply(
        200,
        headers={"content-type": "text/plain", "keep-alive": "timeout=5", "x-custom": "kept"},
        content=b"plain",
    )

    response = client.get("/")

    assert "keep-alive" not in response.headers
    assert response.headers["x-custom"] == "kept"


def test_proxy_preserves_upstream_cookies_and_adds_identity(client: TestClient, upstream: StubUpstream):
    upstream.reply(
        200,
        headers=[("content-type", "text/html"), ("set-cookie", "a=1; Path=/"), ("set-cookie", "b=2; Path=/")],
        content=HTML,
    )

    response = client.get("/")

    cookies = response.headers.get_list("set-cookie")
    assert cookies[:2] == ["a=1; Path=/", "b=2; Path=/"]
    assert len(cookies) == 3
    assert cookies[2].startswith("_gap=")


def test_proxy_relays_compressed_body_and_reports_title(
    client: TestClient, upstream: StubUpstream, app_dispatcher: Dispatcher, collector: StubCollector
):
    compressed = gzip.compress(HTML)
    upstream.reply(
        200,
        headers={"content-type": "text/html; charset=utf-8", "content-encoding": "gzip"},
        content=compressed,
    )

    response = client.get("/compressed")

    assert response.headers["content-encoding"] == "gzip"
    assert response.headers["content-length"] == str(len(compressed))
    assert response.content == HTML
    hits = _hits(client, app_dispatcher, collector)
    assert len(hits) == 1
    assert hits[0]["dt"] == "Upstream Page"
    assert hits[0]["dp"] == "/compressed"
    assert hits[0]["dh"] == "example.com"


def test_proxy_returns_bad_gateway_when_upstream_unreachable(
    client: TestClient, upstream: StubUpstream, app_dispatcher: Dispatcher, collector: StubCollector
):
    upstream.error = httpx.ConnectError("connection refused")

    response = client.get("/down")

    assert response.status_code == 502
    hits = _hits(client, app_dispatcher, collector)
    assert len(hits) == 1
    assert hits[0]["dt"] == ""


def test_proxy_reuses_identity_cookie(client: TestClient, app_dispatcher: Dispatcher, collector: StubCollector):
    first = client.get("/one")
    second = client.get("/two")

    assert "_gap" in first.cookies
    assert "set-cookie" not in second.headers
    assert {hit["cid"] for hit in _hits(client, app_dispatcher, collector)} == {first.cookies["_gap"]}


def test_proxy_serves_every_method(client: TestClient, upstream: StubUpstream):
    for method in ("PUT", "PATCH", "DELETE", "OPTIONS"):
        response = client.request(method, "/resource")
        assert response.status_code == 200

    assert [r.method for r in upstream.requests] == ["PUT", "PATCH", "DELETE", "OPTIONS"]
