"""Translation pipeline - coordinates one chat completion end to end."""

import asyncio
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, TypeVar

import httpx

from zai_adapter.config import Settings
from zai_adapter.core.decoder import decode_events
from zai_adapter.core.extractor import ContentExtractor, StreamState, create_extractor
from zai_adapter.core.preprocessor import RequestPreprocessor, create_preprocessor
from zai_adapter.core.synthesizer import ResponseSynthesizer
from zai_adapter.core.tool_calls import ToolCallExtractor, create_tool_call_extractor
from zai_adapter.core.upstream import TokenProvider, UpstreamError, UpstreamPoster
from zai_adapter.metrics import MetricsExporter
from zai_adapter.models import ChatRequest, ModelList
from zai_adapter.providers.registry import ModelCapability, ModelRegistry
from zai_adapter.utils import get_counter, get_logger

logger = get_logger(__name__)

T = TypeVar("T")

PASSTHROUGH_PARAMS = ("temperature", "top_p", "max_tokens")


def new_upstream_id(prefix: str) -> str:
    return f"{prefix}-{time.time_ns()}"


async def with_heartbeat(events: AsyncIterator[T], interval: float) -> AsyncIterator[T | None]:
    """Relay ``events``, yielding None after every ``interval`` idle seconds.

    The pending read is never cancelled by a timeout, so no upstream data is
    lost while keep-alives are sent. An interval of 0 disables heartbeats.

    Args:
        events: Source iterator
        interval: Idle seconds between heartbeats

    Yields:
        Source items, or None for a heartbeat
    """
    if interval <= 0:
        async for item in events:
            yield item
        return

    pending: asyncio.Future | None = None
    try:
        while True:
            if pending is None:
                pending = asyncio.ensure_future(events.__anext__())
            done, _ = await asyncio.wait({pending}, timeout=interval)
            if not done:
                yield None
                continue
            finished, pending = pending, None
            try:
                item = finished.result()
            except StopAsyncIteration:
                return
            yield item
    finally:
        if pending is not None and not pending.done():
            pending.cancel()
            await asyncio.gather(pending, return_exceptions=True)


@dataclass
class UpstreamCall:
    """Everything decided about a request before the upstream is contacted."""

    model: str
    capability: ModelCapability
    chat_id: str
    payload: dict[str, Any]
    buffering: bool
    prompt_tokens: int


class TranslationPipeline:
    """Turns an OpenAI chat request into an upstream chat and back.

    Coordinates:
    1. Message preprocessing (tool prompts, tool results, flattening)
    2. Credential and upstream stream acquisition
    3. Event decoding and phase-aware extraction
    4. Response synthesis, streamed or buffered
    5. Metrics collection
    """

    def __init__(
        self,
        settings: Settings,
        token_provider: TokenProvider,
        poster: UpstreamPoster,
        registry: ModelRegistry | None = None,
        preprocessor: RequestPreprocessor | None = None,
        extractor: ContentExtractor | None = None,
        tool_extractor: ToolCallExtractor | None = None,
    ) -> None:
        """Initialize pipeline.

        Args:
            settings: Application settings
            token_provider: Source of upstream bearer tokens
            poster: Upstream HTTP client
            registry: Model capability registry
            preprocessor: Request preprocessor
            extractor: Content extractor
            tool_extractor: Tool-call extractor
        """
        self.settings = settings
        self.token_provider = token_provider
        self.poster = poster
        self.registry = registry or ModelRegistry()
        self.preprocessor = preprocessor or create_preprocessor(settings.function_call_enabled)
        self.extractor = extractor or create_extractor(settings.think_tags_mode)
        self.tool_extractor = tool_extractor or create_tool_call_extractor(settings.max_json_scan)
        self.counter = get_counter()

    def prepare(self, request: ChatRequest) -> UpstreamCall:
        """Build the upstream request body and per-request decisions.

        Args:
            request: Incoming chat request

        Returns:
            Prepared upstream call
        """
        model = request.model or self.settings.default_model
        capability = self.registry.resolve(model)
        chat_id = new_upstream_id("chat")

        payload: dict[str, Any] = {
            "stream": True,
            "chat_id": chat_id,
            "id": new_upstream_id("msg"),
            "model": capability.id,
            "messages": self.preprocessor.process(request),
            "features": {"enable_thinking": capability.has_thinking},
        }
        for key in PASSTHROUGH_PARAMS:
            value = getattr(request, key)
            if value is not None:
                payload[key] = value

        return UpstreamCall(
            model=model,
            capability=capability,
            chat_id=chat_id,
            payload=payload,
            buffering=self.settings.function_call_enabled and bool(request.tools),
            prompt_tokens=self.counter.count_messages(request.messages),
        )

    def _synthesizer(self, call: UpstreamCall, include_usage: bool = False) -> ResponseSynthesizer:
        return ResponseSynthesizer(
            model=call.model,
            tool_extractor=self.tool_extractor,
            buffering=call.buffering,
            include_usage=include_usage,
            prompt_tokens=call.prompt_tokens,
            counter=self.counter,
        )

    def _record(
        self,
        call: UpstreamCall,
        synthesizer: ResponseSynthesizer,
        state: StreamState,
        stream: bool,
        start_time: float,
    ) -> None:
        usage = synthesizer.usage(state)
        response_time = time.time() - start_time
        MetricsExporter.record_completion(
            model=call.model,
            stream=stream,
            finish_reason=synthesizer.finish_reason or "stop",
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            tool_calls=len(synthesizer.tool_calls or []),
            response_time=response_time,
        )
        logger.info(
            "pipeline.complete",
            completion_id=synthesizer.id,
            model=call.model,
            stream=stream,
            finish_reason=synthesizer.finish_reason,
            completion_tokens=usage.completion_tokens,
            response_time_ms=round(response_time * 1000, 2),
        )

    async def process(self, request: ChatRequest) -> dict[str, Any]:
        """Run a non-streaming completion.

        Args:
            request: Incoming chat request

        Returns:
            ``chat.completion`` object
        """
        start_time = time.time()
        call = self.prepare(request)
        synthesizer = self._synthesizer(call)
        state = StreamState()

        logger.info(
            "pipeline.start",
            completion_id=synthesizer.id,
            model=call.model,
            upstream_model=call.capability.id,
            messages=len(request.messages),
            buffering=call.buffering,
        )

        try:
            token = await self.token_provider.get_token()
            async with self.poster.open_chat(call.payload, token, call.chat_id) as byte_stream:
                async for event in decode_events(byte_stream):
                    if event.done:
                        break
                    delta = self.extractor.extract(event, state, call.capability.has_thinking)
                    if delta is not None:
                        state.record(delta)
        except (httpx.HTTPError, UpstreamError):
            MetricsExporter.record_upstream_error(call.model)
            raise

        body = synthesizer.completion(state)
        self._record(call, synthesizer, state, False, start_time)
        return body

    async def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        """Run a streaming completion.

        The upstream is opened before the first chunk is yielded, so a caller
        that awaits the first chunk sees connection failures as exceptions.

        Args:
            request: Incoming chat request

        Yields:
            SSE-formatted events, ending with ``data: [DONE]``
        """
        start_time = time.time()
        call = self.prepare(request)
        synthesizer = self._synthesizer(call, request.include_usage)
        state = StreamState()

        logger.info(
            "pipeline.stream_start",
            completion_id=synthesizer.id,
            model=call.model,
            upstream_model=call.capability.id,
            messages=len(request.messages),
            buffering=call.buffering,
        )

        try:
            token = await self.token_provider.get_token()
            async with self.poster.open_chat(call.payload, token, call.chat_id) as byte_stream:
                yield synthesizer.role_chunk()
                events = with_heartbeat(decode_events(byte_stream), self.settings.sse_heartbeat_seconds)
                async with aclosing(events):
                    async for event in events:
                        if event is None:
                            yield synthesizer.keep_alive()
                            continue
                        if event.done:
                            break
                        delta = self.extractor.extract(event, state, call.capability.has_thinking)
                        if delta is None:
                            continue
                        state.record(delta)
                        chunk = synthesizer.delta_chunk(delta)
                        if chunk is not None:
                            yield chunk
        except (httpx.HTTPError, UpstreamError) as e:
            MetricsExporter.record_upstream_error(call.model)
            logger.error("pipeline.stream_failed", completion_id=synthesizer.id, error=str(e))
            raise

        for chunk in synthesizer.finish(state):
            yield chunk
        self._record(call, synthesizer, state, True, start_time)

    async def list_models(self) -> dict[str, Any]:
        """Model listing, falling back to the static table.

        Returns:
            OpenAI ``list`` object of model cards
        """
        cards = []
        try:
            token = await self.token_provider.get_token()
            cards = self.registry.cards_from_upstream(await self.poster.fetch_models(token))
        except (httpx.HTTPError, UpstreamError, ValueError) as e:
            logger.warning("models.upstream_failed", error=str(e))
        if not cards:
            cards = self.registry.fallback_cards()
        return ModelList(data=cards).model_dump()


def create_pipeline(
    settings: Settings,
    client: httpx.AsyncClient,
    registry: ModelRegistry | None = None,
) -> TranslationPipeline:
    """Factory for translation pipeline.

    Args:
        settings: Application settings
        client: Shared HTTP client for upstream calls
        registry: Model capability registry

    Returns:
        Configured pipeline
    """
    return TranslationPipeline(
        settings=settings,
        token_provider=TokenProvider(settings, client),
        poster=UpstreamPoster(settings, client),
        registry=registry,
    )
