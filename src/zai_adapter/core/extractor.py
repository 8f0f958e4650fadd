"""Phase-aware content extractor - maps upstream events to OpenAI deltas."""

from dataclasses import dataclass, field
from typing import Callable

from zai_adapter.core.markup import (
    BLANK_LINE,
    Token,
    TokenKind,
    canonicalize,
    drop_details_blocks,
    drop_stray_tags,
    find_duration,
    find_summary,
    remove_reasoning_markers,
    render,
    replace_summaries,
    split_at_reasoning_close,
    strip_quote_prefixes,
    tokenize,
)
from zai_adapter.models import ExtractedDelta, Phase, ThinkMode, UpstreamEvent
from zai_adapter.utils import get_logger

logger = get_logger(__name__)

SUMMARY_MARKER = "summary>"
DETAILS_BLOCK_OPEN = '<details type="reasoning" open><div>'


@dataclass
class StreamState:
    """Per-request extraction state.

    One instance belongs to exactly one upstream stream; it is created when
    the request starts and dropped when the stream ends.
    """

    last_phase: Phase = Phase.THINKING
    reasoning: list[str] = field(default_factory=list)
    content: list[str] = field(default_factory=list)

    def record(self, delta: ExtractedDelta) -> None:
        if delta.reasoning_content is not None:
            self.reasoning.append(delta.reasoning_content)
        if delta.content is not None:
            self.content.append(delta.content)

    @property
    def reasoning_text(self) -> str:
        return "".join(self.reasoning)

    @property
    def content_text(self) -> str:
        return "".join(self.content)

    @property
    def completion_text(self) -> str:
        """Reasoning followed by content, as scanned for tool calls and counted for usage."""
        return self.reasoning_text + self.content_text


def _by_phase(text: str, phase: Phase) -> ExtractedDelta | None:
    if not text:
        return None
    if phase is Phase.THINKING:
        return ExtractedDelta(reasoning_content=text)
    return ExtractedDelta(content=text)


def _render_reasoning(tokens: list[Token], phase: Phase) -> ExtractedDelta | None:
    tokens = remove_reasoning_markers(replace_summaries(tokens))
    return _by_phase(render(tokens), phase)


def _render_think(tokens: list[Token], phase: Phase) -> ExtractedDelta | None:
    text = render(
        replace_summaries(tokens),
        {TokenKind.REASONING_OPEN: "<think>", TokenKind.REASONING_CLOSE: "</think>"},
    )
    return _by_phase(text, phase)


def _render_strip(tokens: list[Token], phase: Phase) -> ExtractedDelta | None:
    if phase is Phase.THINKING:
        return None
    tokens = remove_reasoning_markers(replace_summaries(tokens), absorb_close_newlines=False)
    text = render(tokens)
    return ExtractedDelta(content=text) if text else None


def _render_details(tokens: list[Token], phase: Phase) -> ExtractedDelta | None:
    thoughts = ""
    closes = any(token.kind is TokenKind.REASONING_CLOSE for token in tokens)
    if phase is Phase.ANSWER and closes:
        summary = find_summary(tokens)
        duration = find_duration(tokens)
        if summary:
            thoughts = BLANK_LINE + summary
            tokens = replace_summaries(tokens)
        elif duration:
            thoughts = f"{BLANK_LINE}<summary>Thought for {duration} seconds</summary>"
    text = render(
        tokens,
        {
            TokenKind.REASONING_OPEN: DETAILS_BLOCK_OPEN,
            TokenKind.REASONING_CLOSE: f"</div>{thoughts}</details>",
        },
    )
    return ExtractedDelta(content=text) if text else None


def _render_default(tokens: list[Token], phase: Phase) -> ExtractedDelta | None:
    text = render(tokens, {TokenKind.REASONING_CLOSE: "</reasoning>" + BLANK_LINE})
    return _by_phase(text, phase)


ModeRenderer = Callable[[list[Token], Phase], ExtractedDelta | None]

MODE_RENDERERS: dict[ThinkMode, ModeRenderer] = {
    ThinkMode.REASONING: _render_reasoning,
    ThinkMode.THINK: _render_think,
    ThinkMode.STRIP: _render_strip,
    ThinkMode.DETAILS: _render_details,
    ThinkMode.DEFAULT: _render_default,
}


def normalize(tokens: list[Token], phase: Phase, last_phase: Phase) -> list[Token]:
    """Clean upstream reasoning markup into the canonical envelope.

    Args:
        tokens: Tokens of one event
        phase: Phase of the event
        last_phase: Phase of the previous event on the same stream

    Returns:
        Normalized tokens
    """
    tokens = drop_stray_tags(drop_details_blocks(tokens))
    if phase is Phase.THINKING:
        tokens = replace_summaries(tokens, BLANK_LINE)
    tokens = canonicalize(tokens)
    if phase is Phase.ANSWER:
        tokens = split_at_reasoning_close(tokens, last_phase)
    return tokens


class ContentExtractor:
    """Converts upstream events into content or reasoning deltas.

    The presentation mode is fixed per extractor; the phase history lives in
    the ``StreamState`` passed with every call.
    """

    def __init__(self, mode: ThinkMode = ThinkMode.REASONING) -> None:
        """Initialize extractor.

        Args:
            mode: Presentation mode for thinking output
        """
        self.mode = mode
        self._render = MODE_RENDERERS[mode]

    def extract(
        self,
        event: UpstreamEvent,
        state: StreamState,
        has_thinking: bool = True,
    ) -> ExtractedDelta | None:
        """Extract the delta carried by one upstream event.

        Args:
            event: Decoded upstream event
            state: State of the stream the event belongs to
            has_thinking: Whether the target model produces thinking output

        Returns:
            Delta to emit, or None when the event carries nothing to show
        """
        text = event.text
        if not text:
            return None
        if not has_thinking:
            return ExtractedDelta(content=text)

        phase = event.phase
        tokens = tokenize(text)
        if phase is Phase.THINKING or (phase is Phase.ANSWER and SUMMARY_MARKER in text):
            tokens = normalize(tokens, phase, state.last_phase)
        if phase is Phase.THINKING:
            tokens = strip_quote_prefixes(tokens)

        delta = self._render(tokens, phase)
        if phase is not state.last_phase:
            logger.debug("stream.phase_changed", previous=state.last_phase.value, current=phase.value)
        state.last_phase = phase
        return delta


def create_extractor(mode: ThinkMode = ThinkMode.REASONING) -> ContentExtractor:
    """Factory for content extractor.

    Args:
        mode: Presentation mode

    Returns:
        Configured extractor
    """
    return ContentExtractor(mode)
