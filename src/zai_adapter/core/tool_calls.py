"""Tool-call extractor - finds tool calls the model wrote as plain text."""

import json
import re
import uuid
from typing import Any, Iterator

from zai_adapter.models import ToolCall, ToolCallFunction
from zai_adapter.utils import get_logger

logger = get_logger(__name__)

_JSON_FENCE_RE = re.compile(r"```json\s*(\{.*?\})\s*```", re.DOTALL)
_INLINE_RE = re.compile(r'\{[^{}]{0,10000}?"tool_calls"')
_FUNC_LINE_RE = re.compile(
    r"(?:调用函数|call\s+function)\s*[：:]\s*([\w\-.]+)\s*[,，]?\s*(?:参数|arguments)\s*[：:]\s*(?=\{)",
    re.IGNORECASE,
)
_DECODER = json.JSONDecoder()


def new_call_id() -> str:
    """Generate an OpenAI-style tool call id."""
    return f"call_{uuid.uuid4().hex[:24]}"


def _load_payload(raw: str) -> dict[str, Any] | None:
    """Parse a JSON object that carries a ``tool_calls`` list."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if isinstance(data, dict) and isinstance(data.get("tool_calls"), list):
        return data
    return None


def _inline_payloads(text: str) -> Iterator[tuple[int, int, dict[str, Any]]]:
    """Yield (start, end, payload) for inline JSON objects holding ``tool_calls``."""
    pos = 0
    while True:
        match = _INLINE_RE.search(text, pos)
        if match is None:
            return
        try:
            data, end = _DECODER.raw_decode(text, match.start())
        except json.JSONDecodeError:
            pos = match.start() + 1
            continue
        if isinstance(data, dict) and isinstance(data.get("tool_calls"), list):
            yield match.start(), end, data
        pos = end


def _coerce_calls(raw_calls: list[Any]) -> list[ToolCall] | None:
    calls: list[ToolCall] = []
    for item in raw_calls:
        if not isinstance(item, dict):
            continue
        function = item.get("function")
        if not isinstance(function, dict) or not function.get("name"):
            continue
        arguments = function.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments, ensure_ascii=False)
        calls.append(
            ToolCall(
                id=str(item.get("id") or new_call_id()),
                function=ToolCallFunction(name=str(function["name"]), arguments=arguments),
            )
        )
    return calls or None


class ToolCallExtractor:
    """Detects tool calls in generated text.

    Tried in order, first match wins:
    1. fenced ```json blocks with a ``tool_calls`` list
    2. inline JSON objects with a ``tool_calls`` list
    3. a "call function: NAME, arguments: {...}" line
    """

    def __init__(self, max_scan: int = 200_000) -> None:
        """Initialize extractor.

        Args:
            max_scan: Maximum number of characters inspected
        """
        self.max_scan = max_scan

    def extract(self, text: str) -> list[ToolCall] | None:
        """Extract tool calls from text.

        Args:
            text: Generated text

        Returns:
            Tool calls, or None when the text holds none
        """
        if not text:
            return None
        sample = text[: self.max_scan]

        for match in _JSON_FENCE_RE.finditer(sample):
            payload = _load_payload(match.group(1))
            if payload is not None:
                calls = _coerce_calls(payload["tool_calls"])
                if calls:
                    logger.debug("tool_calls.found", source="fence", count=len(calls))
                    return calls

        for _, _, payload in _inline_payloads(sample):
            calls = _coerce_calls(payload["tool_calls"])
            if calls:
                logger.debug("tool_calls.found", source="inline", count=len(calls))
                return calls

        match = _FUNC_LINE_RE.search(sample)
        if match:
            try:
                _, end = _DECODER.raw_decode(sample, match.end())
            except json.JSONDecodeError:
                return None
            logger.debug("tool_calls.found", source="text", name=match.group(1))
            return [
                ToolCall(
                    id=new_call_id(),
                    function=ToolCallFunction(name=match.group(1), arguments=sample[match.end():end]),
                )
            ]

        return None

    def strip(self, text: str) -> str:
        """Remove tool-call JSON from text, leaving prose untouched.

        Args:
            text: Generated text

        Returns:
            Trimmed text without tool-call payloads
        """
        if not text:
            return ""

        def _drop_fence(match: re.Match) -> str:
            return "" if _load_payload(match.group(1)) is not None else match.group(0)

        result = _JSON_FENCE_RE.sub(_drop_fence, text)

        pieces: list[str] = []
        pos = 0
        for start, end, _ in _inline_payloads(result):
            pieces.append(result[pos:start])
            pos = end
        pieces.append(result[pos:])
        return "".join(pieces).strip()


def create_tool_call_extractor(max_scan: int = 200_000) -> ToolCallExtractor:
    """Factory for tool-call extractor."""
    return ToolCallExtractor(max_scan)
