"""Shared helpers: upstream event builders and a fake Z.ai upstream."""

import json
from typing import Any

import httpx

from zai_adapter.config import Settings

TOOL_REPLY = (
    "```json\n"
    + json.dumps(
        {
            "tool_calls": [
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "get_weather", "arguments": json.dumps({"city": "Paris"})},
                }
            ]
        }
    )
    + "\n```"
)

WEATHER_TOOL = {
    "type": "function",
    "function": {
        "name": "get_weather",
        "description": "Get the current weather",
        "parameters": {
            "type": "object",
            "properties": {
                "city": {"type": "string", "description": "City name"},
                "unit": {"type": "string", "description": "celsius or fahrenheit"},
            },
            "required": ["city"],
        },
    },
}


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from .env files, without retry delays or heartbeats."""
    values: dict[str, Any] = {
        "retry_backoff": 0,
        "sse_heartbeat_seconds": 0,
        "upstream_token": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def thinking(text: str) -> dict[str, Any]:
    return {"type": "chat:completion", "data": {"phase": "thinking", "delta_content": text}}


def answer(text: str, edit: bool = False) -> dict[str, Any]:
    key = "edit_content" if edit else "delta_content"
    return {"type": "chat:completion", "data": {"phase": "answer", key: text}}


def done() -> dict[str, Any]:
    return {"type": "chat:completion", "data": {"phase": "answer", "delta_content": "", "done": True}}


def sse_body(*events: dict[str, Any]) -> bytes:
    """Encode upstream events the way the upstream streams them."""
    return b"".join(f"data: {json.dumps(event, ensure_ascii=False)}\n\n".encode("utf-8") for event in events)


def parse_sse(text: str) -> list[Any]:
    """Split a downstream SSE body into JSON payloads (and the ``[DONE]`` marker)."""
    payloads: list[Any] = []
    for block in text.split("\n\n"):
        block = block.strip()
        if not block or block.startswith(":"):
            continue
        assert block.startswith("data: ")
        data = block[len("data: "):]
        payloads.append(data if data == "[DONE]" else json.loads(data))
    return payloads


class FakeUpstream:
    """Callable handler for ``httpx.MockTransport`` imitating the Z.ai web API."""

    def __init__(self) -> None:
        self.token = "anon-token-0123456789"
        self.token_status = 200
        self.events: list[dict[str, Any]] = [answer("Hello"), done()]
        self.chat_status = 200
        self.chat_failures = 0
        self.models: dict[str, Any] | None = None
        self.requests: list[httpx.Request] = []

    @property
    def chat_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/api/chat/completions"]

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/api/v1/auths/"]

    def last_payload(self) -> dict[str, Any]:
        return json.loads(self.chat_requests[-1].content)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/api/v1/auths/":
            if self.token_status != 200:
                return httpx.Response(self.token_status, text="auth unavailable")
            return httpx.Response(200, json={"token": self.token})

        if path == "/api/chat/completions":
            if self.chat_failures > 0:
                self.chat_failures -= 1
                return httpx.Response(502, text="bad gateway")
            if self.chat_status != 200:
                return httpx.Response(self.chat_status, text="upstream down")
            return httpx.Response(
                200,
                content=sse_body(*self.events),
                headers={"content-type": "text/event-stream"},
            )

        if path == "/api/models":
            if self.models is None:
                return httpx.Response(500, text="models unavailable")
            return httpx.Response(200, json=self.models)

        return httpx.Response(404)
