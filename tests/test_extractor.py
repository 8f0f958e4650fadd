"""Tests for the phase-aware content extractor."""

import pytest

from zai_adapter.core.extractor import MODE_RENDERERS, StreamState, create_extractor
from zai_adapter.core.markup import REASONING_CLOSE, canonicalize, tokenize
from zai_adapter.models import ExtractedDelta, Phase, ThinkMode, UpstreamEvent


def event(phase: str, text: str = "", edit: str = "") -> UpstreamEvent:
    return UpstreamEvent(phase=Phase.parse(phase), delta_content=text, edit_content=edit)


THINKING_OPENER = '<details type="reasoning" done="false">\n> hmm'


class TestContentExtractor:
    """Test extraction across phases and modes."""

    def test_empty_event_yields_nothing(self) -> None:
        """Test an event without text yields no delta."""
        extractor = create_extractor()
        state = StreamState()

        assert extractor.extract(event("answer"), state) is None
        assert state.last_phase is Phase.THINKING

    def test_edit_content_used_when_delta_empty(self) -> None:
        """Test edit_content is used when delta_content is empty."""
        delta = create_extractor().extract(event("answer", edit="fixed"), StreamState())

        assert delta == ExtractedDelta(content="fixed")

    def test_non_thinking_model_passthrough(self) -> None:
        """Test text is passed through for models without thinking."""
        text = "<details>kept</details>"

        delta = create_extractor().extract(event("thinking", text), StreamState(), has_thinking=False)

        assert delta == ExtractedDelta(content=text)

    def test_reasoning_mode(self) -> None:
        """Test reasoning mode puts thinking on the reasoning channel."""
        extractor = create_extractor(ThinkMode.REASONING)
        state = StreamState()

        first = extractor.extract(event("thinking", THINKING_OPENER), state)
        second = extractor.extract(event("thinking", "\n> more"), state)
        third = extractor.extract(event("answer", "Hi"), state)

        assert first == ExtractedDelta(reasoning_content="hmm")
        assert second == ExtractedDelta(reasoning_content="\nmore")
        assert third == ExtractedDelta(content="Hi")
        assert state.last_phase is Phase.ANSWER

    def test_reasoning_mode_strips_markers(self) -> None:
        """Test reasoning mode removes reasoning markers."""
        extractor = create_extractor(ThinkMode.REASONING)
        state = StreamState()

        for text in ("<reasoning>a", "b</reasoning>"):
            delta = extractor.extract(event("thinking", text), state)
            assert "<reasoning>" not in delta.reasoning_content
            assert "</reasoning>" not in delta.reasoning_content

    def test_think_mode(self) -> None:
        """Test think mode wraps reasoning in think tags."""
        delta = create_extractor(ThinkMode.THINK).extract(event("thinking", THINKING_OPENER), StreamState())

        assert delta == ExtractedDelta(reasoning_content="<think>\n\nhmm")

    def test_default_mode_keeps_markers(self) -> None:
        """Test default mode keeps the reasoning markers."""
        extractor = create_extractor(ThinkMode.DEFAULT)

        delta = extractor.extract(event("thinking", THINKING_OPENER), StreamState())
        closing = extractor.extract(event("answer", "done</reasoning>"), StreamState())

        assert delta == ExtractedDelta(reasoning_content="<reasoning>\n\nhmm")
        assert closing == ExtractedDelta(content="done</reasoning>\n\n")

    def test_strip_mode_drops_thinking(self) -> None:
        """Test strip mode drops thinking events."""
        extractor = create_extractor(ThinkMode.STRIP)
        state = StreamState()

        assert extractor.extract(event("thinking", THINKING_OPENER), state) is None
        assert extractor.extract(event("thinking", "anything"), state) is None
        assert extractor.extract(event("answer", "Answer</reasoning>"), state) == ExtractedDelta(content="Answer")

    def test_details_mode(self) -> None:
        """Test details mode opens an HTML details block."""
        extractor = create_extractor(ThinkMode.DETAILS)

        delta = extractor.extract(event("thinking", THINKING_OPENER), StreamState())

        assert delta == ExtractedDelta(content='<details type="reasoning" open><div>\n\nhmm')

    def test_details_generated_summary(self) -> None:
        """Test details mode builds a summary from the duration."""
        tokens = canonicalize(tokenize('<details type="reasoning" duration="7">')) + [REASONING_CLOSE]

        delta = MODE_RENDERERS[ThinkMode.DETAILS](tokens, Phase.ANSWER)

        assert delta.content == (
            '<details type="reasoning" open><div>\n\n</div>'
            "\n\n<summary>Thought for 7 seconds</summary></details>"
        )

    def test_details_summary_kept_without_closing_marker(self) -> None:
        """Test a summary stays in place when the event has no closing marker."""
        state = StreamState()
        extractor = create_extractor(ThinkMode.DETAILS)
        extractor.extract(event("thinking", "x"), state)

        delta = extractor.extract(
            event("answer", '<details duration="5">x</details><summary>T</summary>\n\nans'),
            state,
        )

        assert delta.content == "<summary>T</summary>\n\nans"

    def test_answer_with_summary_is_normalized(self) -> None:
        """Test an answer carrying a summary is normalized."""
        text = (
            '<details type="reasoning" done="true" duration="3">\n> thought\n</details>\n'
            "<summary>Thought briefly</summary>\nFinal answer"
        )

        delta = create_extractor(ThinkMode.REASONING).extract(event("answer", edit=text), StreamState())

        assert delta == ExtractedDelta(content="Final answer")

    def test_fully_removed_markup_yields_nothing(self) -> None:
        """Test markup that normalizes to nothing yields no delta."""
        state = StreamState()

        delta = create_extractor().extract(event("thinking", "<details>hello</details>"), state)

        assert delta is None
        assert state.last_phase is Phase.THINKING

    def test_unknown_phase_goes_to_content(self) -> None:
        """Test unknown phases render on the content channel."""
        delta = create_extractor().extract(event("tool_call", "x"), StreamState())

        assert delta == ExtractedDelta(content="x")

    def test_states_are_independent(self) -> None:
        """Interleaved streams keep their own phase history."""
        extractor = create_extractor(ThinkMode.REASONING)
        first, second = StreamState(), StreamState()
        boundary = "a\n<summary>s</summary>x</details>tail"

        extractor.extract(event("answer", "started"), first)
        extractor.extract(event("thinking", "pondering"), second)

        assert extractor.extract(event("answer", boundary), second) == ExtractedDelta(content="\n\ntail")
        assert extractor.extract(event("answer", boundary), first) is None
        assert first.last_phase is Phase.ANSWER
        assert second.last_phase is Phase.ANSWER

    @pytest.mark.parametrize("mode", list(ThinkMode))
    def test_every_mode_has_renderer(self, mode: ThinkMode) -> None:
        """Test every mode has a renderer."""
        assert mode in MODE_RENDERERS


class TestStreamState:
    """Test per-request accumulation."""

    def test_record(self) -> None:
        """Test deltas accumulate per channel."""
        state = StreamState()

        state.record(ExtractedDelta(reasoning_content="think "))
        state.record(ExtractedDelta(content="an"))
        state.record(ExtractedDelta(content="swer"))

        assert state.reasoning_text == "think "
        assert state.content_text == "answer"
        assert state.completion_text == "think answer"
