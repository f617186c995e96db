"""Buffered byte reader with restartable peeking and linebreak normalization."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import BinaryIO

from osml.errors import ErrorKind, OsmlError
from osml.location import SourceId, SourceLocation, SourceOffset
from osml.tokens import is_whitespace

# Linebreak automaton state: low nibble = count mod 2, high nibble = byte type
LB_STATE_NONE = 0x00
LB_STATE_ONE = 0x01
LB_STATE_LF = 0x10
LB_STATE_CR = 0x20
LB_STATE_MASK_CNT = 0x0F
LB_STATE_MASK_TYPE = 0xF0

DEFAULT_CHUNK_SIZE = 4096


@dataclass(slots=True)
class ReadCursor:
    """Position of one cursor inside the chunked buffer."""

    destructive: bool
    line: int = 1
    column: int = 1
    buffer_elem: int = 0
    buffer_pos: int = 0
    offset: SourceOffset = 0
    lb_state: int = LB_STATE_NONE
    # Offset of the first raw byte of the last emitted logical byte
    last_start: SourceOffset = 0

    def assign(self, other: ReadCursor) -> None:
        """Copy the position of *other*; the destructive flag is kept."""
        self.line = other.line
        self.column = other.column
        self.buffer_elem = other.buffer_elem
        self.buffer_pos = other.buffer_pos
        self.offset = other.offset
        self.lb_state = other.lb_state
        self.last_start = other.last_start

    def copy(self) -> ReadCursor:
        c = ReadCursor(False)
        c.assign(self)
        return c


class SourceReader:
    """Byte-level input with a destructive read cursor and a peek cursor.

    Input either comes from ``feed()`` calls (closed with ``close()``) or
    from a binary *stream* that is pulled in chunks on demand. Every
    ``\\n``, ``\\r``, ``\\r\\n`` and ``\\n\\r`` comes out as a single ``\\n``,
    independent of where chunk boundaries fall.
    """

    def __init__(
        self,
        data: bytes | None = None,
        *,
        stream: BinaryIO | None = None,
        source_id: SourceId = 0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.source_id = source_id
        self._stream = stream
        self._chunk_size = chunk_size
        self._buffer: deque[bytes] = deque()
        self._closed = False
        self._depleted = False
        self._read = ReadCursor(True)
        self._peek = ReadCursor(False)
        if data is not None:
            self.feed(data)
            self.close()

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def feed(self, data: bytes) -> bool:
        """Append *data*; returns False (and does nothing) once closed or stream-backed."""
        if self._closed or self._stream is not None:
            return False
        if data:
            self._buffer.append(bytes(data))
        return True

    def close(self) -> None:
        self._closed = True

    @property
    def is_closed(self) -> bool:
        """True once no further input can arrive."""
        return self._closed or self._depleted

    def _fetch(self) -> bool:
        if self._stream is None or self._depleted:
            return False
        try:
            chunk = self._stream.read(self._chunk_size)
        except OSError as exc:
            raise OsmlError(
                f"Error while reading from input stream: {exc}",
                SourceLocation(self.source_id, self._read.offset, self._read.offset),
                ErrorKind.IO,
            ) from exc
        if not chunk:
            self._depleted = True
            return False
        self._buffer.append(bytes(chunk))
        return True

    # ------------------------------------------------------------------
    # Cursor primitives
    # ------------------------------------------------------------------

    def _read_raw(self, cursor: ReadCursor) -> int | None:
        while True:
            if cursor.buffer_elem >= len(self._buffer):
                if not self._fetch():
                    return None
                continue
            chunk = self._buffer[cursor.buffer_elem]
            if cursor.buffer_pos < len(chunk):
                b = chunk[cursor.buffer_pos]
                cursor.buffer_pos += 1
                cursor.offset += 1
                return b
            if cursor.destructive:
                self._buffer.popleft()
                if self._peek.buffer_elem > 0:
                    self._peek.buffer_elem -= 1
            else:
                cursor.buffer_elem += 1
            cursor.buffer_pos = 0

    def _read_logical(self, cursor: ReadCursor) -> int | None:
        while True:
            start = cursor.offset
            b = self._read_raw(cursor)
            if b is None:
                return None

            if b == 0x0A or b == 0x0D:
                lb_type = LB_STATE_LF if b == 0x0A else LB_STATE_CR
                last_count = cursor.lb_state & LB_STATE_MASK_CNT
                last_type = cursor.lb_state & LB_STATE_MASK_TYPE
                cursor.lb_state = ((last_count + 1) & LB_STATE_ONE) | lb_type
                if last_count != 0 and last_type != lb_type:
                    # Second half of \r\n or \n\r
                    continue
                b = 0x0A
            else:
                cursor.lb_state = LB_STATE_NONE

            if b == 0x0A:
                cursor.line += 1
                cursor.column = 1
            elif (b & 0xC0) != 0x80:
                cursor.column += 1
            cursor.last_start = start
            return b

    # ------------------------------------------------------------------
    # Public reading interface
    # ------------------------------------------------------------------

    def read(self) -> int | None:
        """Return the next logical byte at the read cursor, or None at end."""
        b = self._read_logical(self._read)
        self.reset_peek()
        return b

    def peek(self) -> int | None:
        """Return the next logical byte at the peek cursor and advance it."""
        return self._read_logical(self._peek)

    def fetch_peek(self) -> int | None:
        """Return the byte ``peek()`` would return, without moving any cursor."""
        cursor = self._peek.copy()
        return self._read_logical(cursor)

    def commit_peek(self) -> None:
        """Advance the read cursor to the peek cursor, releasing consumed chunks."""
        for _ in range(self._peek.buffer_elem):
            self._buffer.popleft()
        self._peek.buffer_elem = 0
        self._read.assign(self._peek)

    def reset_peek(self) -> None:
        self._peek.assign(self._read)

    def consume_whitespace(self) -> bool:
        """Skip ASCII whitespace; returns False if the input ended while skipping."""
        while True:
            b = self.peek()
            if b is None:
                self.reset_peek()
                return False
            if not is_whitespace(b):
                self.reset_peek()
                return True
            self.commit_peek()

    def at_end(self) -> bool:
        """True when input is closed and the read cursor has nothing left."""
        cursor = self._read.copy()
        return self._read_logical(cursor) is None and self.is_closed

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    @property
    def line(self) -> int:
        return self._read.line

    @property
    def column(self) -> int:
        return self._read.column

    @property
    def offset(self) -> SourceOffset:
        return self._read.offset

    @property
    def peek_line(self) -> int:
        return self._peek.line

    @property
    def peek_offset(self) -> SourceOffset:
        return self._peek.offset

    @property
    def last_peek_start(self) -> SourceOffset:
        """Offset of the first raw byte of the most recently peeked byte."""
        return self._peek.last_start

    @property
    def last_read_start(self) -> SourceOffset:
        return self._read.last_start

    def peek_mark(self) -> ReadCursor:
        """Snapshot the peek cursor; pair with ``restore_peek``."""
        return self._peek.copy()

    def restore_peek(self, mark: ReadCursor) -> None:
        """Move the peek cursor back to *mark*.

        Only valid while the read cursor has not moved since the mark.
        """
        self._peek.assign(mark)

    def location(self, start: SourceOffset, end: SourceOffset | None = None) -> SourceLocation:
        return SourceLocation(self.source_id, start, start if end is None else end)
