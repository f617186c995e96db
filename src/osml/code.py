"""String, line-comment and block-comment handling on top of a Tokenizer."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum, auto

from osml.errors import ErrorKind, MultilineTokenError, OsmlError
from osml.location import SourceLocation
from osml.tokenizer import Tokenizer
from osml.tokens import EMPTY, TEXT, Token, TokenId


class TokenMode(Enum):
    STRING_START_END = auto()
    LINE_COMMENT = auto()
    BLOCK_COMMENT_START = auto()
    BLOCK_COMMENT_END = auto()
    LINEBREAK = auto()
    ESCAPE = auto()
    NONE = auto()


@dataclass(frozen=True, slots=True)
class TokenDescriptor:
    """How a raw token id is treated; *id* is the id reported to the caller."""

    mode: TokenMode
    id: TokenId


class _State(Enum):
    NORMAL = auto()
    IN_STRING = auto()
    IN_LINE_COMMENT = auto()
    IN_BLOCK_COMMENT = auto()


# Modes that switch the filter out of NORMAL
_OPENERS = {
    TokenMode.STRING_START_END: _State.IN_STRING,
    TokenMode.BLOCK_COMMENT_START: _State.IN_BLOCK_COMMENT,
    TokenMode.LINE_COMMENT: _State.IN_LINE_COMMENT,
}


class CodeTokenFilter:
    """Wraps a ``Tokenizer`` and folds strings and comments into single tokens.

    Outside strings and comments, TEXT tokens are split into words on
    spaces and tabs. Strings come out as one token carrying the string
    descriptor's id and the unquoted content; comments likewise unless
    *ignore_comments* is set.
    """

    def __init__(
        self,
        tokenizer: Tokenizer,
        descriptors: dict[TokenId, TokenDescriptor],
        *,
        ignore_comments: bool = False,
    ) -> None:
        self.tokenizer = tokenizer
        self.descriptors = descriptors
        self.ignore_comments = ignore_comments
        self._state = _State.NORMAL
        self._queue: deque[Token] = deque()
        self._peek_idx = 0
        self._buf: list[str] = []
        self._start: Token | None = None
        self._return_id: TokenId = TEXT
        self._escaped = False

    @classmethod
    def from_strings(
        cls,
        tokenizer: Tokenizer,
        modes: dict[str, TokenMode],
        *,
        ignore_comments: bool = False,
    ) -> CodeTokenFilter:
        """Register every string in *modes* and build the descriptor table."""
        descriptors: dict[TokenId, TokenDescriptor] = {}
        for s, mode in modes.items():
            id = tokenizer.register_token(s)
            if id == EMPTY:
                raise ValueError(f"token {s!r} could not be registered")
            descriptors[id] = TokenDescriptor(mode, id)
        return cls(tokenizer, descriptors, ignore_comments=ignore_comments)

    # ------------------------------------------------------------------
    # Reading interface, mirrors Tokenizer
    # ------------------------------------------------------------------

    def read(self) -> Token | None:
        self._peek_idx = 0
        if not self._queue and not self._fill():
            return None
        return self._queue.popleft()

    def peek(self) -> Token | None:
        while self._peek_idx >= len(self._queue):
            if not self._fill():
                return None
        token = self._queue[self._peek_idx]
        self._peek_idx += 1
        return token

    def reset_peek(self) -> None:
        self._peek_idx = 0

    def commit_peek(self) -> None:
        for _ in range(self._peek_idx):
            self._queue.popleft()
        self._peek_idx = 0

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _fill(self) -> bool:
        while True:
            t = self.tokenizer.read()
            if t is None:
                return self._finish()
            if self._prepare(t):
                return True

    def _finish(self) -> bool:
        if not self.tokenizer.reader.is_closed:
            return False
        state = self._state
        if state == _State.IN_LINE_COMMENT:
            self._state = _State.NORMAL
            if not self.ignore_comments and self._start is not None:
                self._queue.append(self._construct(self._start))
                return True
        elif state in (_State.IN_STRING, _State.IN_BLOCK_COMMENT):
            self._state = _State.NORMAL
            what = "string" if state == _State.IN_STRING else "block comment"
            start = self._start
            raise OsmlError(
                f"Input ended inside a {what}",
                start.location if start is not None else None,
                ErrorKind.UNEXPECTED_END,
            )
        return False

    def _construct(self, end: Token) -> Token:
        start = self._start
        if start is None:
            raise RuntimeError("no string or comment is open")
        content = "".join(self._buf)
        self._buf.clear()
        return Token(
            self._return_id,
            content,
            SourceLocation(start.location.source_id, start.location.start, end.location.end),
            start.line,
            end.end_line,
        )

    def _prepare(self, t: Token) -> bool:
        desc = self.descriptors.get(t.id)
        mode = desc.mode if desc is not None else TokenMode.NONE

        if t.multiline and mode != TokenMode.LINEBREAK:
            raise MultilineTokenError(t.location)

        state = self._state
        if state == _State.NORMAL:
            if desc is not None and desc.mode in _OPENERS:
                self._state = _OPENERS[desc.mode]
                self._start = t
                self._return_id = desc.id
                self._escaped = False
                return False
            if desc is not None and desc.mode == TokenMode.LINEBREAK:
                self._queue.append(Token(desc.id, t.content, t.location, t.line, t.end_line))
                return True
            if t.id == TEXT:
                words = _split_words(t)
                self._queue.extend(words)
                return bool(words)
            self._queue.append(t)
            return True

        if state == _State.IN_LINE_COMMENT:
            if mode == TokenMode.LINEBREAK:
                self._state = _State.NORMAL
                if self.ignore_comments:
                    self._buf.clear()
                    return False
                self._queue.append(self._construct(t))
                return True
            if not self.ignore_comments:
                self._buf.append(t.content)
            return False

        if state == _State.IN_BLOCK_COMMENT:
            if mode == TokenMode.BLOCK_COMMENT_END:
                self._state = _State.NORMAL
                if self.ignore_comments:
                    self._buf.clear()
                    return False
                self._queue.append(self._construct(t))
                return True
            if not self.ignore_comments:
                self._buf.append(t.content)
            return False

        # IN_STRING
        if mode == TokenMode.ESCAPE:
            if self._escaped:
                self._buf.append(t.content)
            self._escaped = not self._escaped
            return False
        if mode == TokenMode.STRING_START_END:
            if self._escaped:
                self._buf.append(t.content)
                self._escaped = False
                return False
            self._state = _State.NORMAL
            self._queue.append(self._construct(t))
            return True
        self._escaped = False
        self._buf.append(t.content)
        return False


def _split_words(t: Token) -> list[Token]:
    """Split a TEXT token on spaces and tabs, keeping byte-accurate locations."""
    words: list[Token] = []
    base = t.location.start
    src = t.location.source_id
    offset = 0
    begin: int | None = None
    begin_offset = 0
    for i, ch in enumerate(t.content):
        ws = ch in " \t"
        if begin is None:
            if not ws:
                begin = i
                begin_offset = offset
        elif ws:
            words.append(
                Token(
                    TEXT,
                    t.content[begin:i],
                    SourceLocation(src, base + begin_offset, base + offset),
                    t.line,
                    t.end_line,
                )
            )
            begin = None
        offset += len(ch.encode("utf-8"))
    if begin is not None:
        words.append(
            Token(
                TEXT,
                t.content[begin:],
                SourceLocation(src, base + begin_offset, t.location.end),
                t.line,
                t.end_line,
            )
        )
    return words
