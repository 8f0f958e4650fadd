"""Response synthesizer - builds OpenAI chunks and completion objects."""

import json
import time
import uuid
from typing import Any, Iterator

from pydantic import BaseModel

from zai_adapter.core.extractor import StreamState
from zai_adapter.core.tool_calls import ToolCallExtractor
from zai_adapter.models import (
    ChatResponse,
    Choice,
    ExtractedDelta,
    ResponseMessage,
    StreamChoice,
    StreamResponse,
    ToolCall,
    Usage,
)
from zai_adapter.utils import get_counter, get_logger
from zai_adapter.utils.token_counter import TokenCounter

logger = get_logger(__name__)

KEEP_ALIVE = ": keep-alive\n\n"
DONE = "data: [DONE]\n\n"


def sse_event(chunk: BaseModel) -> str:
    """Serialize a chunk as one SSE ``data:`` event."""
    payload = chunk.model_dump(exclude_none=True)
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class ResponseSynthesizer:
    """Assembles the OpenAI-compatible output of one completion.

    A synthesizer belongs to a single response: the completion id and the
    ``created`` timestamp are fixed at construction and shared by every chunk.

    With ``buffering`` set, nothing but the opening chunk is produced until
    the upstream finishes; the buffered text is then checked for tool calls.
    """

    def __init__(
        self,
        model: str,
        tool_extractor: ToolCallExtractor,
        buffering: bool = False,
        include_usage: bool = False,
        prompt_tokens: int = 0,
        counter: TokenCounter | None = None,
    ) -> None:
        """Initialize synthesizer.

        Args:
            model: Model name echoed in every envelope
            tool_extractor: Extractor run over the final text when buffering
            buffering: Whether the response is held back until the end
            include_usage: Whether a streamed response ends with a usage chunk
            prompt_tokens: Estimated prompt size
            counter: Token estimator for the completion
        """
        self.model = model
        self.tool_extractor = tool_extractor
        self.buffering = buffering
        self.include_usage = include_usage
        self.prompt_tokens = prompt_tokens
        self.counter = counter or get_counter()

        self.id = f"chatcmpl-{uuid.uuid4().hex}"
        self.created = int(time.time())
        self.finish_reason: str | None = None
        self.tool_calls: list[ToolCall] | None = None

    def _chunk(
        self,
        delta: dict[str, Any],
        finish_reason: str | None = None,
    ) -> str:
        return sse_event(
            StreamResponse(
                id=self.id,
                created=self.created,
                model=self.model,
                choices=[StreamChoice(delta=delta, finish_reason=finish_reason)],
            )
        )

    def role_chunk(self) -> str:
        """Opening chunk carrying only the assistant role."""
        return self._chunk({"role": "assistant"})

    def delta_chunk(self, delta: ExtractedDelta) -> str | None:
        """Chunk for one extracted delta, or None while buffering."""
        if self.buffering:
            return None
        return self._chunk(delta.to_delta())

    def keep_alive(self) -> str:
        return KEEP_ALIVE

    def usage(self, state: StreamState) -> Usage:
        """Estimate usage for the completion accumulated in ``state``."""
        return Usage.estimate(self.prompt_tokens, self.counter.count(state.completion_text))

    def _resolve_tool_calls(self, state: StreamState) -> list[ToolCall] | None:
        if not self.buffering:
            return None
        calls = self.tool_extractor.extract(state.completion_text)
        if calls:
            logger.info("response.tool_calls", completion_id=self.id, count=len(calls))
        return calls

    def finish(self, state: StreamState) -> Iterator[str]:
        """Closing events of a streamed response.

        Yields the buffered output (if any), the finish-reason chunk, the
        optional usage chunk and the ``[DONE]`` sentinel.

        Args:
            state: State of the finished stream
        """
        self.tool_calls = self._resolve_tool_calls(state)
        self.finish_reason = "tool_calls" if self.tool_calls else "stop"

        if self.buffering:
            if state.reasoning_text:
                yield self._chunk({"reasoning_content": state.reasoning_text})
            if self.tool_calls:
                yield self._chunk(
                    {
                        "tool_calls": [
                            {"index": index, **call.model_dump()}
                            for index, call in enumerate(self.tool_calls)
                        ]
                    }
                )
            else:
                text = self.tool_extractor.strip(state.content_text)
                if text:
                    yield self._chunk({"content": text})

        yield self._chunk({}, self.finish_reason)

        if self.include_usage:
            yield sse_event(
                StreamResponse(
                    id=self.id,
                    created=self.created,
                    model=self.model,
                    choices=[],
                    usage=self.usage(state),
                )
            )
        yield DONE

    def completion(self, state: StreamState) -> dict[str, Any]:
        """Non-streaming ``chat.completion`` object.

        Args:
            state: State of the finished upstream stream

        Returns:
            JSON-ready completion; ``content`` is present even when null
        """
        content = state.content_text or None
        self.tool_calls = self._resolve_tool_calls(state)
        if self.tool_calls:
            content = self.tool_extractor.strip(content or "") or None
        self.finish_reason = "tool_calls" if self.tool_calls else "stop"

        response = ChatResponse(
            id=self.id,
            created=self.created,
            model=self.model,
            choices=[
                Choice(
                    message=ResponseMessage(
                        content=content,
                        reasoning_content=state.reasoning_text or None,
                        tool_calls=self.tool_calls,
                    ),
                    finish_reason=self.finish_reason,
                )
            ],
            usage=self.usage(state),
        )
        body = response.model_dump(exclude_none=True)
        body["choices"][0]["message"].setdefault("content", None)
        return body
