"""Tests for the AsyncClient request executor, using httpx.MockTransport."""

from __future__ import annotations

import base64
import json

import httpx
import pytest

from ravelry import __version__
from ravelry.auth.base import AuthResult
from ravelry.auth.tokens import TokenStore
from ravelry.client import (
    ApiErrorResponse,
    AsyncClient,
    NotModifiedResponse,
    OkResponse,
    RateLimitedResponse,
    TransportErrorResponse,
)
from ravelry.exceptions import Unauthenticated
from ravelry.models import AuthKind, AuthMode, Endpoint, RequestOptions
from ravelry.plugins.basic import BasicAuth
from ravelry.plugins.oauth2 import OAuth2Auth


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.requests: list[httpx.Request] = []
        self._responses = list(responses) or [httpx.Response(200, json={"ok": True})]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def _client(recorder: Recorder, authenticator=None, **kwargs) -> AsyncClient:
    return AsyncClient(
        authenticator,
        base_url="https://api.example.com",
        transport=httpx.MockTransport(recorder),
        **kwargs,
    )


def _basic_header(user: str, password: str) -> str:
    return "Basic " + base64.b64encode(f"{user}:{password}".encode()).decode()


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class TestCredentials:
    async def test_basic_auth_header(self) -> None:
        recorder = Recorder()
        async with _client(recorder, BasicAuth("read-key", "secret")) as client:
            await client.get("current_user.json")
        assert recorder.last.headers["Authorization"] == _basic_header("read-key", "secret")

    async def test_no_authenticator_sends_nothing(self) -> None:
        recorder = Recorder()
        async with _client(recorder) as client:
            assert client.auth_kind is AuthKind.NONE
            await client.get("patterns/search.json")
        assert "Authorization" not in recorder.last.headers

    async def test_auth_mode_none_overrides_authenticator(self, valid_token) -> None:
        recorder = Recorder()
        auth = OAuth2Auth(TokenStore(valid_token))
        async with _client(recorder, auth) as client:
            await client.execute(
                Endpoint(method="POST", path="upload/image.json", auth_mode=AuthMode.NONE)
            )
            await client.get("current_user.json")

        assert "Authorization" not in recorder.requests[0].headers
        assert recorder.requests[1].headers["Authorization"] == "Bearer access-1"

    async def test_auth_mode_none_skips_failing_authenticator(self, make_token) -> None:
        recorder = Recorder()
        auth = OAuth2Auth(TokenStore(make_token(refresh_token=None, expires_in=-10)))
        async with _client(recorder, auth) as client:
            outcome = await client.execute(
                Endpoint(path="color_families.json", auth_mode=AuthMode.NONE)
            )
        assert isinstance(outcome, OkResponse)

    async def test_credentials_come_from_resolve_credential(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        calls = []

        async def fake_resolve(authenticator, request, auth_mode):
            calls.append((request.path, auth_mode))
            return AuthResult(headers={"Authorization": "Resolved"})

        monkeypatch.setattr("ravelry.client.async_client.resolve_credential", fake_resolve)
        recorder = Recorder()
        async with _client(recorder, BasicAuth("k", "p")) as client:
            await client.get("current_user.json")
        assert calls == [("current_user.json", AuthMode.DEFAULT)]
        assert recorder.last.headers["Authorization"] == "Resolved"

    async def test_auth_failure_sends_no_request(self, make_token) -> None:
        recorder = Recorder()
        auth = OAuth2Auth(TokenStore(make_token(refresh_token=None, expires_in=-10)))
        async with _client(recorder, auth) as client:
            with pytest.raises(Unauthenticated):
                await client.get("current_user.json")
        assert recorder.requests == []

    async def test_401_invalidates_bearer_token(self, valid_token) -> None:
        recorder = Recorder(
            httpx.Response(401, json={"errors": ["invalid token"]}),
            httpx.Response(200, json={"user": {"id": 1}}),
        )
        refreshed: list[str] = []

        async def refresh(token):
            refreshed.append(token.access_token)
            return token.model_copy(update={"access_token": "access-2"})

        auth = OAuth2Auth(TokenStore(valid_token, refresh=refresh))
        async with _client(recorder, auth) as client:
            first = await client.get("current_user.json")
            second = await client.get("current_user.json")

        assert isinstance(first, ApiErrorResponse) and first.status == 401
        assert isinstance(second, OkResponse)
        assert refreshed == ["access-1"]
        assert recorder.requests[1].headers["Authorization"] == "Bearer access-2"
        assert len(recorder.requests) == 2


# ---------------------------------------------------------------------------
# Request shape
# ---------------------------------------------------------------------------


class TestRequestShape:
    async def test_defaults_headers_and_url(self) -> None:
        recorder = Recorder()
        async with _client(recorder) as client:
            await client.get("/patterns/search.json", params={"query": "cowl"})

        request = recorder.last
        assert request.url.path == "/patterns/search.json"
        assert request.url.params["query"] == "cowl"
        assert request.headers["User-Agent"] == f"ravelry-client/{__version__}"
        assert request.headers["Accept"] == "application/json"

    async def test_debug_and_etag_options(self) -> None:
        recorder = Recorder()
        async with _client(recorder) as client:
            await client.execute(
                Endpoint(
                    path="current_user.json",
                    options=RequestOptions(debug=True, if_none_match='"v1"'),
                )
            )
        assert recorder.last.url.params["debug"] == "1"
        assert recorder.last.headers["If-None-Match"] == '"v1"'

    async def test_client_default_options_overridden_per_endpoint(self) -> None:
        recorder = Recorder()
        async with _client(recorder, options=RequestOptions(debug=True)) as client:
            await client.get("a.json")
            await client.execute(Endpoint(path="b.json", options=RequestOptions(debug=False)))
        assert recorder.requests[0].url.params["debug"] == "1"
        assert "debug" not in recorder.requests[1].url.params

    async def test_post_data_wraps_payload(self) -> None:
        recorder = Recorder()
        async with _client(recorder) as client:
            await client.post_data("projects/me/create.json", {"name": "Socks"})
        assert recorder.last.method == "POST"
        assert json.loads(recorder.last.content) == {"data": {"name": "Socks"}}

    async def test_form_data(self) -> None:
        recorder = Recorder()
        async with _client(recorder) as client:
            await client.post("upload/request_token.json", data={"a": "1"})
        assert recorder.last.content == b"a=1"

    async def test_endpoint_headers_win(self) -> None:
        recorder = Recorder()
        async with _client(recorder, BasicAuth("k", "p")) as client:
            await client.get("x.json", headers={"Authorization": "Custom override"})
        assert recorder.last.headers["Authorization"] == "Custom override"


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class TestOutcomes:
    async def test_not_modified(self) -> None:
        recorder = Recorder(httpx.Response(304, headers={"ETag": '"v1"'}))
        async with _client(recorder) as client:
            outcome = await client.get("current_user.json")
        assert outcome == NotModifiedResponse(etag='"v1"')

    async def test_rate_limited(self) -> None:
        recorder = Recorder(httpx.Response(429, headers={"Retry-After": "120"}))
        async with _client(recorder) as client:
            outcome = await client.get("current_user.json")
        assert isinstance(outcome, RateLimitedResponse)
        assert outcome.retry_after == 120
        assert len(recorder.requests) == 1

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = AsyncClient(base_url="https://api.example.com", transport=httpx.MockTransport(handler))
        async with client:
            outcome = await client.get("current_user.json")
        assert isinstance(outcome, TransportErrorResponse)
        assert isinstance(outcome.cause, httpx.ConnectError)

    async def test_corrupt_content_encoding(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            # the body is only decoded when the client reads it
            return httpx.Response(
                200, headers={"Content-Encoding": "gzip"}, stream=httpx.ByteStream(b"not-gzip")
            )

        client = AsyncClient(base_url="https://api.example.com", transport=httpx.MockTransport(handler))
        async with client:
            outcome = await client.get("x.json")
        assert isinstance(outcome, TransportErrorResponse)
        assert isinstance(outcome.cause, httpx.DecodingError)

    async def test_too_many_redirects(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"Location": "https://api.example.com/loop.json"})

        http = httpx.AsyncClient(
            base_url="https://api.example.com",
            transport=httpx.MockTransport(handler),
            follow_redirects=True,
        )
        async with http, AsyncClient(http_client=http) as client:
            outcome = await client.get("loop.json")
        assert isinstance(outcome, TransportErrorResponse)
        assert isinstance(outcome.cause, httpx.TooManyRedirects)

    async def test_ok_keeps_headers(self) -> None:
        recorder = Recorder(httpx.Response(200, json={"user": {}}, headers={"ETag": "e9"}))
        async with _client(recorder) as client:
            outcome = await client.get("current_user.json")
        assert outcome.etag == "e9"


class TestLifecycle:
    async def test_external_http_client_not_closed(self) -> None:
        http = httpx.AsyncClient(
            base_url="https://api.example.com", transport=httpx.MockTransport(Recorder())
        )
        async with AsyncClient(http_client=http) as client:
            await client.get("a.json")
        assert not http.is_closed
        await http.aclose()

    def test_base_url_normalized(self) -> None:
        assert AsyncClient(base_url="https://api.example.com").base_url == "https://api.example.com/"

    def test_repr(self) -> None:
        text = repr(AsyncClient(BasicAuth("key", "very-secret")))
        assert "very-secret" not in text
