"""Token ids, the Token value type, and identifier helpers."""

from __future__ import annotations

from dataclasses import dataclass

from osml.location import SourceLocation

TokenId = int

# Reserved token ids. Ids at or above FIRST_USER are handed out by the tokenizer.
EMPTY: TokenId = 0  # no token
TEXT: TokenId = 1  # run of data
NEWLINE: TokenId = 2
PARAGRAPH: TokenId = 3
SECTION: TokenId = 4
INDENT: TokenId = 5
DEDENT: TokenId = 6

FIRST_USER: TokenId = 16

SPECIAL_NAMES: dict[TokenId, str] = {
    EMPTY: "EMPTY",
    TEXT: "TEXT",
    NEWLINE: "NEWLINE",
    PARAGRAPH: "PARAGRAPH",
    SECTION: "SECTION",
    INDENT: "INDENT",
    DEDENT: "DEDENT",
}


@dataclass(frozen=True, slots=True)
class Token:
    """A matched token or a run of text.

    ``line`` and ``end_line`` are the 1-based lines of the first and last
    logical byte; they let consumers detect tokens crossing a linebreak.
    """

    id: TokenId
    content: str
    location: SourceLocation
    line: int = 1
    end_line: int = 1

    @property
    def is_text(self) -> bool:
        return self.id == TEXT

    @property
    def multiline(self) -> bool:
        return self.end_line != self.line


def is_identifier_start(ch: int | str) -> bool:
    """Return True if *ch* may start an identifier (ASCII letter or underscore)."""
    if isinstance(ch, str):
        ch = ord(ch) if len(ch) == 1 else -1
    return (0x41 <= ch <= 0x5A) or (0x61 <= ch <= 0x7A) or ch == 0x5F


def is_identifier_char(ch: int | str) -> bool:
    """Return True if *ch* may continue an identifier."""
    if isinstance(ch, str):
        ch = ord(ch) if len(ch) == 1 else -1
    return is_identifier_start(ch) or (0x30 <= ch <= 0x39) or ch == 0x2D


def is_identifier(s: str) -> bool:
    """Return True if *s* matches ``[A-Za-z_][A-Za-z0-9_-]*``."""
    if not s or not is_identifier_start(s[0]):
        return False
    return all(is_identifier_char(c) for c in s[1:])


def is_namespaced_identifier(s: str) -> bool:
    """Return True for identifiers joined by single ``:`` separators."""
    return all(is_identifier(part) for part in s.split(":"))


def is_whitespace(ch: int) -> bool:
    """ASCII whitespace as understood by the reader and the tokenizer."""
    return ch in (0x20, 0x09, 0x0A, 0x0D, 0x0B, 0x0C)
