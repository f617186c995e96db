"""Longest-match tokenizer with whitespace-aware text aggregation."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from osml.location import SourceLocation
from osml.reader import ReadCursor, SourceReader
from osml.tokens import EMPTY, FIRST_USER, SPECIAL_NAMES, TEXT, Token, TokenId
from osml.trie import TokenTrie, TrieNode
from osml.whitespace import TextBuffer, WhitespaceMode, make_buffer


@dataclass(slots=True)
class _Entry:
    byte: int
    start: int
    end: int
    line: int


@dataclass(slots=True)
class _Match:
    id: TokenId
    first: int  # index of the first entry
    stop: int  # index one past the last entry
    mark: ReadCursor


class Tokenizer:
    """Turns a ``SourceReader`` into tokens.

    Bytes that do not belong to a registered token are gathered into a
    TEXT token, reduced according to the whitespace mode. When a match
    completes while text is pending, the text comes out first and the
    match is queued for the next call.
    """

    def __init__(
        self,
        reader: SourceReader,
        whitespace_mode: WhitespaceMode = WhitespaceMode.PRESERVE,
    ) -> None:
        self.reader = reader
        self.whitespace_mode = whitespace_mode
        self.trie = TokenTrie()
        self._tokens: dict[TokenId, str] = {}
        # Text tokens keep their raw entries so callers can re-read byte offsets
        self._queue: deque[tuple[Token, list[_Entry] | None]] = deque()
        self._peek_idx = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_token(self, token: str) -> TokenId:
        """Register *token* under the smallest free id; EMPTY on failure."""
        if not token:
            return EMPTY
        id = FIRST_USER
        while id in self._tokens:
            id += 1
        if not self.trie.register(token, id):
            return EMPTY
        self._tokens[id] = token
        return id

    def unregister_token(self, id: TokenId) -> bool:
        token = self._tokens.get(id)
        if token is None or not self.trie.unregister(token):
            return False
        del self._tokens[id]
        return True

    def lookup(self, id: TokenId) -> str | None:
        """Return the string registered for *id* (or the name of a special id)."""
        if id in self._tokens:
            return self._tokens[id]
        return SPECIAL_NAMES.get(id)

    @property
    def registered(self) -> dict[TokenId, str]:
        return dict(self._tokens)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read(self, sink: TextBuffer | None = None) -> Token | None:
        """Consume and return the next token; None at end (or while starved).

        For TEXT tokens the unreduced bytes, with their exact source
        offsets, are also appended to *sink* when one is given.
        """
        self._peek_idx = 0
        if not self._queue and not self._fill():
            return None
        token, entries = self._queue.popleft()
        if sink is not None and entries:
            for e in entries:
                sink.append(e.byte, e.start, e.end, e.line)
        return token

    def peek(self) -> Token | None:
        """Return the token after the last peeked one without consuming it."""
        while self._peek_idx >= len(self._queue):
            if not self._fill():
                return None
        token, _ = self._queue[self._peek_idx]
        self._peek_idx += 1
        return token

    def reset_peek(self) -> None:
        self._peek_idx = 0

    def commit_peek(self) -> None:
        """Consume every token returned by ``peek`` since the last reset."""
        for _ in range(self._peek_idx):
            self._queue.popleft()
        self._peek_idx = 0

    @property
    def has_queued(self) -> bool:
        """True while tokens are buffered ahead of the reader's read cursor."""
        return bool(self._queue)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _fill(self) -> bool:
        reader = self.reader
        reader.reset_peek()

        entries: list[_Entry] = []
        lookups: list[tuple[TrieNode, int]] = []
        best: _Match | None = None

        while True:
            b = reader.peek()
            if b is None:
                if not reader.is_closed:
                    # More input may arrive; retry later from the same spot
                    reader.reset_peek()
                    return False
                break
            line = reader.peek_line - 1 if b == 0x0A else reader.peek_line
            idx = len(entries)
            entries.append(_Entry(b, reader.last_peek_start, reader.peek_offset, line))

            if best is None:
                lookups.append((self.trie.root, idx))

            advanced: list[tuple[TrieNode, int]] = []
            for node, first in lookups:
                child = node.children.get(b)
                if child is None:
                    continue
                if child.id != EMPTY:
                    length = idx + 1 - first
                    if best is None or length > best.stop - best.first:
                        best = _Match(child.id, first, idx + 1, reader.peek_mark())
                if child.children:
                    advanced.append((child, first))
            lookups = advanced

            if best is not None and not lookups:
                break

        text_end = best.first if best is not None else len(entries)
        text_entries = entries[:text_end]
        text = self._make_text(text_entries)
        if text is not None:
            self._queue.append((text, text_entries))
        if best is not None:
            self._queue.append((self._make_match(entries, best), None))
            reader.restore_peek(best.mark)
        reader.commit_peek()

        return text is not None or best is not None

    def _make_text(self, entries: list[_Entry]) -> Token | None:
        if not entries:
            return None
        buf = make_buffer(self.whitespace_mode)
        for e in entries:
            buf.append(e.byte, e.start, e.end, e.line)
        if not buf:
            return None
        return Token(
            TEXT,
            buf.text(),
            SourceLocation(self.reader.source_id, buf.start, buf.end),
            buf.line,
            buf.end_line,
        )

    def _make_match(self, entries: list[_Entry], match: _Match) -> Token:
        part = entries[match.first : match.stop]
        content = bytes(e.byte for e in part).decode("utf-8", errors="replace")
        return Token(
            match.id,
            content,
            SourceLocation(self.reader.source_id, part[0].start, part[-1].end),
            part[0].line,
            part[-1].line,
        )
