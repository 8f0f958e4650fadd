"""Tests for token estimation."""

import pytest

from zai_adapter.models import Message
from zai_adapter.utils import get_counter


class TestApproximateTokenCounter:
    """Test the character-class estimate."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("", 0),
            ("hello", 1),
            ("hello world", 3),
            ("你好", 3),
            ("你好 world!", 5),
            ("123", 2),
        ],
    )
    def test_count(self, text: str, expected: int) -> None:
        """Test the character class estimate."""
        assert get_counter().count(text) == expected

    def test_count_messages(self) -> None:
        """Test counting over messages."""
        messages = [
            Message(role="system", content="hello"),
            Message(role="user", content=[{"type": "text", "text": "你好"}]),
        ]

        assert get_counter().count_messages(messages) == 4
