"""Pydantic models for API requests and responses."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ThinkMode(str, Enum):
    """Presentation of upstream thinking output."""

    REASONING = "reasoning"  # reasoning_content channel, markers stripped
    THINK = "think"          # reasoning_content channel, <think> markers
    STRIP = "strip"          # thinking dropped
    DETAILS = "details"      # inline collapsible <details> block
    DEFAULT = "default"      # markers kept verbatim


class Phase(str, Enum):
    """Upstream generation phase."""

    THINKING = "thinking"
    ANSWER = "answer"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "Phase":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


class ImageUrl(BaseModel):
    """Image reference inside a content part."""

    url: str = ""
    detail: str | None = None


class ContentPart(BaseModel):
    """Typed part of a multi-part message content."""

    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None
    image_url: ImageUrl | None = None


class Message(BaseModel):
    """Chat message model."""

    model_config = ConfigDict(extra="allow")

    role: str
    content: str | list[ContentPart | str] | None = None
    name: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    tool_call_id: str | None = None

    def text(self) -> str:
        """Flatten content to plain text (text parts joined by a space).

        Bare strings inside a content list count as text parts.
        """
        if isinstance(self.content, str):
            return self.content
        if not self.content:
            return ""
        return " ".join(
            part if isinstance(part, str) else part.text or ""
            for part in self.content
            if isinstance(part, str) or part.type == "text"
        )


class StreamOptions(BaseModel):
    """OpenAI stream options."""

    include_usage: bool = False


class ChatRequest(BaseModel):
    """OpenAI-compatible chat completion request."""

    model_config = ConfigDict(extra="allow")

    model: str | None = None
    messages: list[Message]
    stream: bool = False
    stream_options: StreamOptions | None = None
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None

    @property
    def include_usage(self) -> bool:
        """Whether a streamed response should end with a usage chunk."""
        return bool(self.stream and self.stream_options and self.stream_options.include_usage)


class ToolCallFunction(BaseModel):
    """Function invocation carried by a tool call."""

    name: str
    arguments: str = "{}"


class ToolCall(BaseModel):
    """OpenAI tool call."""

    id: str
    type: Literal["function"] = "function"
    function: ToolCallFunction


class Usage(BaseModel):
    """Token usage estimate."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def estimate(cls, prompt_tokens: int, completion_tokens: int) -> "Usage":
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )


class ResponseMessage(BaseModel):
    """Assistant message of a non-streaming completion."""

    role: str = "assistant"
    content: str | None = None
    reasoning_content: str | None = None
    tool_calls: list[ToolCall] | None = None


class Choice(BaseModel):
    """Chat completion choice."""

    index: int = 0
    message: ResponseMessage
    finish_reason: str | None = "stop"


class ChatResponse(BaseModel):
    """OpenAI-compatible chat completion response."""

    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: list[Choice]
    usage: Usage | None = None


class StreamChoice(BaseModel):
    """Streaming chat completion choice."""

    index: int = 0
    delta: dict[str, Any]
    finish_reason: str | None = None


class StreamResponse(BaseModel):
    """OpenAI-compatible streaming response chunk."""

    id: str
    object: str = "chat.completion.chunk"
    created: int
    model: str
    choices: list[StreamChoice]
    usage: Usage | None = None


class ModelCard(BaseModel):
    """Entry of the /v1/models listing."""

    id: str
    object: str = "model"
    name: str
    created: int
    owned_by: str = "z.ai"


class ModelList(BaseModel):
    """Response of the /v1/models listing."""

    object: str = "list"
    data: list[ModelCard] = Field(default_factory=list)


@dataclass(frozen=True)
class UpstreamEvent:
    """One decoded upstream SSE event."""

    phase: Phase = Phase.OTHER
    delta_content: str = ""
    edit_content: str = ""
    done: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "UpstreamEvent":
        """Build an event from the upstream JSON object (fields live under ``data``)."""
        data = payload.get("data")
        if not isinstance(data, dict):
            data = {}
        return cls(
            phase=Phase.parse(data.get("phase")),
            delta_content=data.get("delta_content") or "",
            edit_content=data.get("edit_content") or "",
            done=bool(data.get("done")),
        )

    @property
    def text(self) -> str:
        return self.delta_content or self.edit_content


@dataclass(frozen=True)
class ExtractedDelta:
    """Output of the content extractor: exactly one channel is set."""

    content: str | None = None
    reasoning_content: str | None = None

    def to_delta(self) -> dict[str, str]:
        if self.reasoning_content is not None:
            return {"reasoning_content": self.reasoning_content}
        return {"content": self.content or ""}
