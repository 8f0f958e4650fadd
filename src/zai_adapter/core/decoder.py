"""Upstream SSE decoder - turns raw bytes into upstream events."""

import codecs
import json
from typing import AsyncIterable, AsyncIterator, Any

from zai_adapter.models import UpstreamEvent
from zai_adapter.utils import get_logger

logger = get_logger(__name__)

DATA_PREFIX = "data: "


class UpstreamEventDecoder:
    """Incremental decoder for the upstream line-delimited event stream.

    Bytes may arrive split anywhere, including inside a multi-byte UTF-8
    sequence or a JSON object. Complete lines are parsed as soon as they are
    terminated; the trailing partial line is kept until more data arrives.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        """Consume a chunk of bytes.

        Args:
            chunk: Raw bytes read from the upstream response

        Returns:
            JSON payloads of every line completed by this chunk
        """
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return [payload for payload in map(self._parse_line, lines) if payload is not None]

    def flush(self) -> list[dict[str, Any]]:
        """Parse whatever is left once the stream has ended."""
        rest = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        payload = self._parse_line(rest.strip())
        return [payload] if payload is not None else []

    @staticmethod
    def _parse_line(line: str) -> dict[str, Any] | None:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        raw = line[len(DATA_PREFIX):].strip()
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("upstream.event_dropped", preview=raw[:200])
            return None
        if not isinstance(payload, dict):
            return None
        return payload


async def decode_events(byte_stream: AsyncIterable[bytes]) -> AsyncIterator[UpstreamEvent]:
    """Lazily decode an upstream byte stream into events.

    Args:
        byte_stream: Async iterable of raw response chunks

    Yields:
        Upstream events in arrival order
    """
    decoder = UpstreamEventDecoder()
    async for chunk in byte_stream:
        if not chunk:
            continue
        for payload in decoder.feed(chunk):
            yield UpstreamEvent.from_payload(payload)
    for payload in decoder.flush():
        yield UpstreamEvent.from_payload(payload)
