"""Tests for the upstream token provider and poster."""

import asyncio

import httpx
import pytest

from zai_adapter.core.upstream import TokenProvider, UpstreamError, UpstreamPoster
from tests.helpers import FakeUpstream, answer, done, make_settings, sse_body


def make_http(upstream: FakeUpstream) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


async def _read_chat(poster: UpstreamPoster) -> bytes:
    async with poster.open_chat({"model": "0727-360B-API"}, "tok", "chat-1") as byte_stream:
        return b"".join([chunk async for chunk in byte_stream])


class TestTokenProvider:
    """Test credential acquisition."""

    def test_anonymous_token(self) -> None:
        """Test an anonymous token is fetched with browser headers."""
        upstream = FakeUpstream()
        provider = TokenProvider(make_settings(), make_http(upstream))

        token = asyncio.run(provider.get_token())

        assert token == upstream.token
        request = upstream.token_requests[0]
        assert request.headers["Origin"] == "https://chat.z.ai"
        assert request.headers["X-FE-Version"] == "prod-fe-1.0.76"

    def test_retries_then_falls_back_to_fixed_token(self) -> None:
        """Test token retries fall back to the fixed token."""
        upstream = FakeUpstream()
        upstream.token_status = 503
        provider = TokenProvider(make_settings(upstream_token="fixed"), make_http(upstream))

        token = asyncio.run(provider.get_token())

        assert token == "fixed"
        assert len(upstream.token_requests) == 3

    def test_exhausted_without_fixed_token(self) -> None:
        """Test exhausted retries raise without a fixed token."""
        upstream = FakeUpstream()
        upstream.token = ""
        provider = TokenProvider(make_settings(retry_count=1), make_http(upstream))

        with pytest.raises(UpstreamError):
            asyncio.run(provider.get_token())
        assert len(upstream.token_requests) == 2

    def test_anonymous_disabled(self) -> None:
        """Test the fixed token is used when anonymous tokens are off."""
        upstream = FakeUpstream()
        provider = TokenProvider(
            make_settings(anon_token_enabled=False, upstream_token="fixed"),
            make_http(upstream),
        )

        assert asyncio.run(provider.get_token()) == "fixed"
        assert upstream.requests == []

    def test_non_json_token_response_falls_back(self) -> None:
        """Test an HTML challenge page counts as a failed token attempt."""
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(200, text="<html>challenge</html>")

        provider = TokenProvider(
            make_settings(upstream_token="fixed-token"),
            httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        assert asyncio.run(provider.get_token()) == "fixed-token"
        assert len(attempts) == 3

    def test_non_object_token_response_without_fixed_token(self) -> None:
        """Test a JSON body that is not an object raises UpstreamError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=["token"])

        provider = TokenProvider(
            make_settings(retry_count=0),
            httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(UpstreamError):
            asyncio.run(provider.get_token())


class TestUpstreamPoster:
    """Test the upstream chat call."""

    def test_open_chat_streams_bytes(self) -> None:
        """Test the chat call streams the response bytes."""
        upstream = FakeUpstream()
        upstream.events = [answer("Hi"), done()]
        poster = UpstreamPoster(make_settings(), make_http(upstream))

        body = asyncio.run(_read_chat(poster))

        assert body == sse_body(answer("Hi"), done())
        request = upstream.chat_requests[0]
        assert request.headers["Authorization"] == "Bearer tok"
        assert request.headers["Referer"] == "https://chat.z.ai/c/chat-1"
        assert upstream.last_payload() == {"model": "0727-360B-API"}

    def test_retried_before_first_byte(self) -> None:
        """Test error statuses are retried before the first byte."""
        upstream = FakeUpstream()
        upstream.chat_failures = 2
        poster = UpstreamPoster(make_settings(), make_http(upstream))

        body = asyncio.run(_read_chat(poster))

        assert body
        assert len(upstream.chat_requests) == 3

    def test_connection_errors_retried(self) -> None:
        """Test connection errors are retried."""
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, content=sse_body(done()))

        poster = UpstreamPoster(make_settings(), httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        assert asyncio.run(_read_chat(poster)) == sse_body(done())
        assert len(attempts) == 2

    def test_retries_exhausted(self) -> None:
        """Test exhausted chat retries raise UpstreamError."""
        upstream = FakeUpstream()
        upstream.chat_status = 500
        poster = UpstreamPoster(make_settings(retry_count=1), make_http(upstream))

        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(_read_chat(poster))

        assert exc_info.value.status_code == 500
        assert "upstream down" in exc_info.value.message
        assert len(upstream.chat_requests) == 2

    def test_fetch_models(self) -> None:
        """Test the upstream model list is returned."""
        upstream = FakeUpstream()
        upstream.models = {"data": [{"id": "GLM-4.6"}]}
        poster = UpstreamPoster(make_settings(), make_http(upstream))

        assert asyncio.run(poster.fetch_models("tok")) == upstream.models
