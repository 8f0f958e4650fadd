"""Tagged-variant parser for the upstream thinking markup.

The upstream renders its reasoning as HTML-like blocks (``<details>``,
``<summary>``) interleaved with plain text. Text is split into a flat list of
tokens so every rewrite works on recognised block boundaries rather than on
raw strings. Rendering a token list concatenates the token texts.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from zai_adapter.models import Phase


class TokenKind(Enum):
    """Kinds of markup tokens."""

    TEXT = "text"
    DETAILS_OPEN = "details_open"
    DETAILS_CLOSE = "details_close"
    SUMMARY = "summary"  # whole <summary>...</summary> block
    REASONING_OPEN = "reasoning_open"
    REASONING_CLOSE = "reasoning_close"
    STRAY = "stray"  # </thinking>, <Full>, </Full>


@dataclass(frozen=True)
class Token:
    """A piece of markup."""

    kind: TokenKind
    text: str
    duration: str | None = None

    @classmethod
    def plain(cls, text: str) -> "Token":
        return cls(TokenKind.TEXT, text)


REASONING_OPEN = Token(TokenKind.REASONING_OPEN, "<reasoning>")
REASONING_CLOSE = Token(TokenKind.REASONING_CLOSE, "</reasoning>")
BLANK_LINE = "\n\n"

_TAG_RE = re.compile(
    r"(?P<details_open><details[^>]*>)"
    r"|(?P<details_close></details>)"
    r"|(?P<summary><summary>.*?</summary>)"
    r"|(?P<reasoning_open><reasoning>)"
    r"|(?P<reasoning_close></reasoning>)"
    r"|(?P<stray></thinking>|</?Full>)",
    re.DOTALL,
)
_DURATION_RE = re.compile(r'duration="(\d+)"')
_QUOTE_PREFIX_RE = re.compile(r"^>\s*", re.MULTILINE)


def tokenize(text: str) -> list[Token]:
    """Split text into markup tokens.

    Args:
        text: Raw upstream text

    Returns:
        Tokens whose texts concatenate back to the input
    """
    tokens: list[Token] = []
    pos = 0
    for match in _TAG_RE.finditer(text):
        if match.start() > pos:
            tokens.append(Token.plain(text[pos:match.start()]))
        kind = TokenKind(match.lastgroup)
        duration = None
        if kind is TokenKind.DETAILS_OPEN:
            found = _DURATION_RE.search(match.group())
            duration = found.group(1) if found else None
        tokens.append(Token(kind, match.group(), duration))
        pos = match.end()
    if pos < len(text):
        tokens.append(Token.plain(text[pos:]))
    return tokens


def render(tokens: Iterable[Token], replacements: dict[TokenKind, str] | None = None) -> str:
    """Concatenate tokens, substituting the text of the given kinds."""
    replacements = replacements or {}
    return "".join(replacements.get(token.kind, token.text) for token in tokens)


class TokenBuilder:
    """Accumulates tokens while absorbing newlines around removed markers.

    ``strip_newlines_before`` trims newlines at the end of what has been
    built so far; ``strip_newlines_after`` trims newlines at the start of the
    next text token. Padding never consumes a pending strip.
    """

    def __init__(self) -> None:
        self.tokens: list[Token] = []
        self._strip_next = False

    def add(self, token: Token) -> None:
        if token.kind is TokenKind.TEXT:
            self.text(token.text)
        else:
            self.tag(token)

    def text(self, value: str) -> None:
        if self._strip_next:
            value = value.lstrip("\n")
            if not value:
                return
            self._strip_next = False
        if value:
            self.tokens.append(Token.plain(value))

    def tag(self, token: Token) -> None:
        self._strip_next = False
        self.tokens.append(token)

    def pad(self, value: str) -> None:
        self.tokens.append(Token.plain(value))

    def strip_newlines_before(self) -> None:
        while self.tokens and self.tokens[-1].kind is TokenKind.TEXT:
            stripped = self.tokens[-1].text.rstrip("\n")
            if stripped:
                self.tokens[-1] = Token.plain(stripped)
                return
            self.tokens.pop()

    def strip_newlines_after(self) -> None:
        self._strip_next = True


def drop_details_blocks(tokens: list[Token]) -> list[Token]:
    """Remove every complete ``<details>...</details>`` span."""
    out: list[Token] = []
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token.kind is TokenKind.DETAILS_OPEN:
            close = next(
                (j for j in range(i + 1, len(tokens)) if tokens[j].kind is TokenKind.DETAILS_CLOSE),
                None,
            )
            if close is not None:
                i = close + 1
                continue
        out.append(token)
        i += 1
    return out


def drop_stray_tags(tokens: list[Token]) -> list[Token]:
    return [token for token in tokens if token.kind is not TokenKind.STRAY]


def replace_summaries(tokens: list[Token], replacement: str = "") -> list[Token]:
    """Replace summary blocks, and the newlines around them, with ``replacement``."""
    builder = TokenBuilder()
    for token in tokens:
        if token.kind is TokenKind.SUMMARY:
            builder.strip_newlines_before()
            if replacement:
                builder.pad(replacement)
            builder.strip_newlines_after()
        else:
            builder.add(token)
    return builder.tokens


def canonicalize(tokens: list[Token]) -> list[Token]:
    """Turn upstream ``<details>`` markers into the ``<reasoning>`` envelope."""
    builder = TokenBuilder()
    for token in tokens:
        if token.kind is TokenKind.DETAILS_OPEN:
            builder.tag(Token(TokenKind.REASONING_OPEN, REASONING_OPEN.text, token.duration))
            builder.pad(BLANK_LINE)
            builder.strip_newlines_after()
        elif token.kind is TokenKind.DETAILS_CLOSE:
            builder.strip_newlines_before()
            builder.pad(BLANK_LINE)
            builder.tag(REASONING_CLOSE)
        else:
            builder.add(token)
    return builder.tokens


def split_at_reasoning_close(tokens: list[Token], last_phase: Phase) -> list[Token]:
    """Resolve the thinking-to-answer boundary of an answer-phase event.

    If the text carries a closing reasoning marker followed by answer text,
    only the marker and that text are kept when the stream was still
    thinking; a repeated tail after the answer already started is dropped.
    A marker with nothing after it is reduced to the bare marker.

    Args:
        tokens: Canonicalized tokens of the event
        last_phase: Phase of the previous event on the same stream

    Returns:
        Rewritten tokens
    """
    close = next(
        (i for i, token in enumerate(tokens) if token.kind is TokenKind.REASONING_CLOSE),
        None,
    )
    if close is None:
        return tokens

    after = tokens[close + 1:]
    if not render(after).strip():
        return [Token.plain(BLANK_LINE), REASONING_CLOSE]
    if last_phase is Phase.ANSWER:
        return []
    if last_phase is not Phase.THINKING:
        return tokens

    builder = TokenBuilder()
    builder.pad(BLANK_LINE)
    builder.tag(REASONING_CLOSE)
    builder.pad(BLANK_LINE)
    builder.strip_newlines_after()
    for token in after:
        builder.add(token)
    return builder.tokens


def strip_quote_prefixes(tokens: list[Token]) -> list[Token]:
    """Remove ``> `` line prefixes the upstream renderer puts on thinking lines."""
    out: list[Token] = []
    at_line_start = True
    for token in tokens:
        if token.kind is not TokenKind.TEXT:
            out.append(token)
            at_line_start = False
            continue
        text = token.text
        if at_line_start:
            text = _QUOTE_PREFIX_RE.sub("", text)
        else:
            head, newline, tail = text.partition("\n")
            if newline:
                text = head + newline + _QUOTE_PREFIX_RE.sub("", tail)
        text = text.replace("\n>", "\n")
        if text:
            out.append(Token.plain(text))
            at_line_start = text.endswith("\n")
    return out


def remove_reasoning_markers(tokens: list[Token], *, absorb_close_newlines: bool = True) -> list[Token]:
    """Drop canonical reasoning markers with the newlines next to them."""
    builder = TokenBuilder()
    for token in tokens:
        if token.kind is TokenKind.REASONING_OPEN:
            builder.strip_newlines_after()
        elif token.kind is TokenKind.REASONING_CLOSE:
            if absorb_close_newlines:
                builder.strip_newlines_before()
        else:
            builder.add(token)
    return builder.tokens


def find_summary(tokens: Iterable[Token]) -> str | None:
    return next((token.text for token in tokens if token.kind is TokenKind.SUMMARY), None)


def find_duration(tokens: Iterable[Token]) -> str | None:
    return next((token.duration for token in tokens if token.duration), None)
