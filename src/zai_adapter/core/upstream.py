"""Upstream Z.ai client - bearer tokens, chat streams and the model list."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from zai_adapter.config import Settings
from zai_adapter.metrics import MetricsExporter
from zai_adapter.utils import get_logger, mask_token

logger = get_logger(__name__)


class UpstreamError(Exception):
    """The upstream answered with an error or could not be reached."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"upstream HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message


def browser_headers(api_base: str) -> dict[str, str]:
    """Headers the upstream web frontend sends with every call."""
    return {
        "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/139.0.0.0",
        "Accept": "*/*",
        "Accept-Language": "zh-CN,zh;q=0.9",
        "X-FE-Version": "prod-fe-1.0.76",
        "sec-ch-ua": '"Not;A=Brand";v="99", "Edge";v="139"',
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "Origin": api_base,
    }


def retrying(settings: Settings, operation: str) -> AsyncRetrying:
    """Bounded retry policy shared by token and chat calls.

    ``retry_count + 1`` attempts, the n-th retry waiting ``n * retry_backoff``
    seconds.
    """

    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "upstream.retry",
            operation=operation,
            attempt=retry_state.attempt_number,
            max_attempts=settings.retry_count + 1,
            error=str(exc),
        )
        MetricsExporter.record_retry(operation)

    return AsyncRetrying(
        stop=stop_after_attempt(settings.retry_count + 1),
        wait=wait_incrementing(start=settings.retry_backoff, increment=settings.retry_backoff),
        retry=retry_if_exception_type((httpx.HTTPError, UpstreamError)),
        before_sleep=_log_retry,
        reraise=True,
    )


async def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    body = await response.aread()
    await response.aclose()
    raise UpstreamError(response.status_code, body.decode("utf-8", errors="replace")[:500])


class TokenProvider:
    """Supplies the bearer credential for upstream calls."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient) -> None:
        """Initialize provider.

        Args:
            settings: Application settings
            client: Shared HTTP client
        """
        self.settings = settings
        self.client = client

    async def get_token(self) -> str:
        """Fetch a credential for one request.

        An anonymous token is requested when enabled; once every attempt has
        failed the fixed ``upstream_token`` is used instead.

        Returns:
            Bearer token

        Raises:
            UpstreamError: If no credential could be obtained
        """
        if self.settings.anon_token_enabled:
            try:
                return await self._fetch_anonymous()
            except (httpx.HTTPError, UpstreamError) as e:
                logger.warning("token.anonymous_failed", error=str(e))

        if self.settings.upstream_token:
            return self.settings.upstream_token
        raise UpstreamError(401, "no upstream token available")

    async def _fetch_anonymous(self) -> str:
        url = f"{self.settings.api_base}/api/v1/auths/"
        async for attempt in retrying(self.settings, "token"):
            with attempt:
                response = await self.client.get(
                    url,
                    headers=browser_headers(self.settings.api_base),
                    timeout=self.settings.token_timeout,
                )
                await _raise_for_status(response)
                try:
                    data = response.json()
                except ValueError:
                    data = None
                token = data.get("token") if isinstance(data, dict) else None
                if not token:
                    raise UpstreamError(response.status_code, "anonymous token missing in response")
                logger.debug("token.anonymous", token=mask_token(token))
                return token
        raise UpstreamError(503, "anonymous token retries exhausted")


class UpstreamPoster:
    """Opens upstream chat streams and reads the upstream model list."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient) -> None:
        """Initialize poster.

        Args:
            settings: Application settings
            client: Shared HTTP client
        """
        self.settings = settings
        self.client = client
        self.timeout = httpx.Timeout(
            settings.http_read_timeout,
            connect=settings.http_connect_timeout,
        )

    def _headers(self, token: str, chat_id: str | None = None) -> dict[str, str]:
        headers = browser_headers(self.settings.api_base)
        headers["Authorization"] = f"Bearer {token}"
        if chat_id:
            headers["Referer"] = f"{self.settings.api_base}/c/{chat_id}"
        return headers

    @asynccontextmanager
    async def open_chat(
        self,
        payload: dict[str, Any],
        token: str,
        chat_id: str,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open a streaming chat call.

        Connection failures and error statuses are retried until the first
        byte of a successful response; the stream itself is never retried.

        Args:
            payload: Upstream request body
            token: Bearer token
            chat_id: Upstream conversation id

        Yields:
            Async iterator over the raw response bytes
        """
        url = f"{self.settings.api_base}/api/chat/completions"
        response: httpx.Response | None = None
        async for attempt in retrying(self.settings, "chat"):
            with attempt:
                request = self.client.build_request(
                    "POST",
                    url,
                    json=payload,
                    headers=self._headers(token, chat_id),
                    timeout=self.timeout,
                )
                response = await self.client.send(request, stream=True)
                await _raise_for_status(response)
        if response is None:
            raise UpstreamError(503, "upstream chat retries exhausted")

        logger.debug("upstream.stream_open", chat_id=chat_id, status=response.status_code)
        try:
            yield response.aiter_bytes()
        finally:
            await response.aclose()

    async def fetch_models(self, token: str) -> dict[str, Any]:
        """Read the upstream model list.

        Args:
            token: Bearer token

        Returns:
            Raw upstream JSON
        """
        response = await self.client.get(
            f"{self.settings.api_base}/api/models",
            headers=self._headers(token),
            timeout=self.settings.token_timeout,
        )
        await _raise_for_status(response)
        return response.json()
