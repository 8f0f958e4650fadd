"""Token counting utilities."""

import math
import re
from typing import Iterable, Protocol

from zai_adapter.models import Message


class TokenCounter(Protocol):
    """Protocol for token counting implementations."""
    
    def count(self, text: str) -> int:
        """Count tokens in text.
        
        Args:
            text: Input text
            
        Returns:
            Estimated token count
        """
        ...


class ApproximateTokenCounter:
    """Approximate token counter using character classes.
    
    CJK ideograph: 1.5 units
    Run of Latin letters: 1 unit per run
    Any other character: 0.5 units
    
    The total is rounded up. This is an estimate for usage reporting,
    not a tokenizer.
    """
    
    CJK_RANGE = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")
    LATIN_RUN = re.compile(r"[A-Za-z]+")
    
    def count(self, text: str) -> int:
        """Estimate token count.
        
        Args:
            text: Input text
            
        Returns:
            Estimated token count
        """
        if not text:
            return 0
        
        cjk_chars = len(self.CJK_RANGE.findall(text))
        latin_runs = self.LATIN_RUN.findall(text)
        latin_chars = sum(len(run) for run in latin_runs)
        other_chars = len(text) - cjk_chars - latin_chars
        
        return math.ceil(cjk_chars * 1.5 + len(latin_runs) + other_chars * 0.5)

    def count_messages(self, messages: Iterable[Message]) -> int:
        """Sum the estimate over the text parts of each message."""
        return sum(self.count(message.text()) for message in messages)


def get_counter() -> ApproximateTokenCounter:
    """Get token counter instance."""
    return ApproximateTokenCounter()
