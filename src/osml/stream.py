"""OSML surface syntax: turns bytes into a flat stream of structural events.

The stream parser knows nothing about states or handlers. It recognizes
commands, fields, annotations, comments and escapes, keeps just enough of
a command stack to pair braces and ``\\begin``/``\\end``, and hands data
runs out already reduced according to the whitespace mode.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, auto

from osml.arguments import ArgumentReader, Args
from osml.errors import ErrorKind
from osml.location import SourceLocation
from osml.logger import Logger
from osml.reader import SourceReader
from osml.tokenizer import Tokenizer
from osml.tokens import (
    TEXT,
    Token,
    TokenId,
    is_identifier_char,
    is_identifier_start,
    is_whitespace,
)
from osml.whitespace import WhitespaceMode, make_buffer

_log = logging.getLogger(__name__)

BACKSLASH = "\\"
LINE_COMMENT = "%"
BLOCK_COMMENT_START = "%{"
BLOCK_COMMENT_END = "}%"
FIELD_START = "{"
FIELD_END = "}"
DEFAULT_FIELD_START = "{!"
ANNOTATION_START = "<\\"
ANNOTATION_END = "\\>"

_COLON = ord(":")
_HASH = ord("#")
_LBRACKET = ord("[")
_LBRACE = ord("{")
_RBRACE = ord("}")
_GT = ord(">")
_LT = ord("<")


class StreamState(Enum):
    COMMAND_START = auto()
    ANNOTATION_START = auto()
    ANNOTATION_END = auto()
    RANGE_END = auto()
    FIELD_START = auto()
    FIELD_END = auto()
    DATA = auto()
    TOKEN = auto()
    END = auto()


@dataclass(frozen=True, slots=True)
class StreamEvent:
    state: StreamState
    location: SourceLocation
    name: str = ""
    args: Args = field(default_factory=dict)
    has_range: bool = False
    is_default: bool = False
    content: str = ""
    element_name: str = ""
    token: Token | None = None


@dataclass(slots=True)
class _Command:
    name: str
    has_range: bool = False
    fields: int = 0

    @property
    def in_field(self) -> bool:
        return self.fields > 0 or self.has_range


class OsmlStreamParser:
    """Pull parser over a ``SourceReader``; call ``parse()`` until END.

    The reader must be closed or stream-backed: identifiers and comments
    are read straight from it and cannot wait for more input.
    """

    def __init__(
        self,
        reader: SourceReader,
        logger: Logger,
        whitespace_mode: WhitespaceMode = WhitespaceMode.COLLAPSE,
    ) -> None:
        self.reader = reader
        self.logger = logger
        self.whitespace_mode = whitespace_mode
        self.tokenizer = Tokenizer(reader)

        tk = self.tokenizer
        self._backslash = tk.register_token(BACKSLASH)
        self._line_comment = tk.register_token(LINE_COMMENT)
        self._block_comment_start = tk.register_token(BLOCK_COMMENT_START)
        self._block_comment_end = tk.register_token(BLOCK_COMMENT_END)
        self._field_start = tk.register_token(FIELD_START)
        self._field_end = tk.register_token(FIELD_END)
        self._default_field_start = tk.register_token(DEFAULT_FIELD_START)
        self._annotation_start = tk.register_token(ANNOTATION_START)
        self._annotation_end = tk.register_token(ANNOTATION_END)
        self._builtin = frozenset(tk.registered)

        self._buffer = make_buffer(whitespace_mode)
        self._protected = False
        self._pending: deque[StreamEvent] = deque()
        self._commands: list[_Command] = [_Command("", has_range=True)]
        self._ended = False

    # ------------------------------------------------------------------
    # Token registration for handlers
    # ------------------------------------------------------------------

    def register_token(self, token: str) -> TokenId:
        return self.tokenizer.register_token(token)

    def unregister_token(self, id: TokenId) -> bool:
        if id in self._builtin:
            return False
        return self.tokenizer.unregister_token(id)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def parse(self) -> StreamEvent:
        """Return the next event; END repeats once the input is exhausted."""
        while not self._pending:
            if self._ended:
                return StreamEvent(StreamState.END, self._here())
            self._step()
        return self._pending.popleft()

    def _here(self) -> SourceLocation:
        return self.reader.location(self.reader.offset)

    def _emit(self, state: StreamState, location: SourceLocation, **kwargs: object) -> None:
        self._pending.append(StreamEvent(state, location, **kwargs))  # type: ignore[arg-type]

    def _flush(self) -> None:
        buf = self._buffer
        if buf and (self._protected or not all(is_whitespace(b) for b in buf.data)):
            location = SourceLocation(self.reader.source_id, buf.start, buf.end)
            self._emit(StreamState.DATA, location, content=buf.text())
        buf.clear()
        self._protected = False

    def _step(self) -> None:
        token = self.tokenizer.read(self._buffer)
        if token is None:
            self._flush()
            self._ended = True
            self._emit(StreamState.END, self._here())
            return

        id = token.id
        if id == TEXT:
            return
        if id == self._backslash:
            self._parse_backslash(token)
        elif id == self._annotation_start:
            self._parse_annotation_start(token)
        elif id == self._annotation_end:
            self._flush()
            self._emit(StreamState.ANNOTATION_END, token.location)
        elif id == self._line_comment:
            self._flush()
            self._skip_line()
        elif id == self._block_comment_start:
            self._flush()
            self._skip_block_comment(token)
        elif id == self._block_comment_end:
            # "}%" outside a comment is a field end followed by a line comment
            loc = token.location
            self._flush()
            self._end_field(SourceLocation(loc.source_id, loc.start, loc.start + 1))
            self._skip_line()
        elif id == self._field_start or id == self._default_field_start:
            self._flush()
            self._commands[-1].fields += 1
            self._emit(
                StreamState.FIELD_START,
                token.location,
                is_default=id == self._default_field_start,
            )
        elif id == self._field_end:
            self._flush()
            self._end_field(token.location)
        else:
            self._flush()
            self._emit(StreamState.TOKEN, token.location, token=token)

    # ------------------------------------------------------------------
    # Command stack
    # ------------------------------------------------------------------

    def _push_command(self, name: str, has_range: bool) -> None:
        while not self._commands[-1].in_field:
            self._commands.pop()
        self._commands.append(_Command(name, has_range))

    def _unroll(self) -> _Command:
        while not self._commands[-1].in_field:
            self._commands.pop()
        return self._commands[-1]

    def _end_field(self, location: SourceLocation) -> None:
        top = self._unroll()
        if top.fields == 0:
            self.logger.error(
                'Got field end token "}", but there is no field to end.',
                location,
                ErrorKind.INVALID_COMMAND,
            )
            return
        top.fields -= 1
        self._emit(StreamState.FIELD_END, location)

    # ------------------------------------------------------------------
    # Raw reading helpers
    # ------------------------------------------------------------------

    def _peek_byte(self) -> int | None:
        return self.reader.fetch_peek()

    def _take_byte(self) -> int | None:
        b = self.reader.peek()
        self.reader.commit_peek()
        return b

    def _append_protected(self) -> bool:
        """Move the next character (all of its UTF-8 bytes) into the data buffer."""
        reader = self.reader
        b = reader.peek()
        if b is None:
            reader.reset_peek()
            return False
        self._buffer.append(b, reader.last_peek_start, reader.peek_offset, reader.peek_line, True)
        reader.commit_peek()
        if b >= 0xC0:
            while True:
                c = reader.peek()
                if c is None or (c & 0xC0) != 0x80:
                    reader.reset_peek()
                    break
                self._buffer.append(
                    c, reader.last_peek_start, reader.peek_offset, reader.peek_line, True
                )
                reader.commit_peek()
        self._protected = True
        return True

    def _read_identifier(self, namespaced: bool = True) -> str:
        reader = self.reader
        chars = bytearray()
        while True:
            b = reader.peek()
            if b is not None and (
                is_identifier_char(b) if chars and chars[-1] != _COLON else is_identifier_start(b)
            ):
                chars.append(b)
                reader.commit_peek()
                continue
            if b == _COLON and namespaced and chars:
                after = reader.fetch_peek()
                if after is not None and is_identifier_start(after):
                    chars.append(b)
                    reader.commit_peek()
                    continue
                start = reader.last_peek_start
                self.logger.error(
                    'Expected character before and after namespace separator ":"',
                    reader.location(start, start + 1),
                    ErrorKind.INVALID_IDENTIFIER,
                )
            reader.reset_peek()
            return chars.decode("ascii")

    def _read_name_and_args(self, args: Args) -> None:
        """Read an optional ``#name`` and ``[...]`` argument list into *args*."""
        reader = self.reader
        if self._peek_byte() == _HASH:
            self._take_byte()
            start = reader.offset
            name = self._read_identifier(namespaced=False)
            if not name:
                self.logger.error(
                    'Expected identifier after "#"',
                    reader.location(start),
                    ErrorKind.INVALID_IDENTIFIER,
                )
            else:
                args["name"] = name
        if self._peek_byte() == _LBRACKET:
            self._take_byte()
            start = reader.offset
            parsed = ArgumentReader(reader, self.logger).read()
            for key, value in parsed.items():
                if key == "name" and "name" in args:
                    self.logger.error(
                        "Name argument specified multiple times",
                        reader.location(start, reader.offset),
                        ErrorKind.ARGUMENT_VALIDATION,
                    )
                    continue
                args[key] = value

    def _expect(self, byte: int, what: str) -> bool:
        if self._peek_byte() == byte:
            self._take_byte()
            return True
        self.logger.error(
            f'Expected "{what}"', self._here(), ErrorKind.INVALID_IDENTIFIER
        )
        return False

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _parse_backslash(self, token: Token) -> None:
        start = token.location.start
        b = self._peek_byte()
        if b is None:
            self.logger.error(
                "Trailing backslash at end of input", token.location, ErrorKind.INVALID_IDENTIFIER
            )
            return
        if not is_identifier_start(b):
            self._append_protected()
            return

        self._flush()
        name = self._read_identifier()
        name_end = self.reader.offset
        if name == "begin":
            self._parse_begin(token)
            return
        if name == "end":
            self._parse_end(token)
            return

        args: Args = {}
        self._read_name_and_args(args)
        if self._peek_byte() == _GT:
            self._take_byte()
            extra = [k for k in args if k != "name"]
            if extra:
                self.logger.error(
                    "Annotation end may only carry a name",
                    self.reader.location(start, self.reader.offset),
                    ErrorKind.ARGUMENT_VALIDATION,
                )
            self._emit(
                StreamState.ANNOTATION_END,
                self.reader.location(start, self.reader.offset),
                name=name,
                element_name=str(args.get("name", "")),
            )
            return

        self._push_command(name, False)
        self._emit(
            StreamState.COMMAND_START,
            self.reader.location(start, name_end),
            name=name,
            args=args,
        )

    def _parse_begin(self, token: Token) -> None:
        reader = self.reader
        if not self._expect(_LBRACE, "{"):
            return
        name_start = reader.offset
        name = self._read_identifier()
        name_loc = reader.location(name_start, reader.offset)
        if not name:
            self.logger.error(
                'Expected identifier after "\\begin{"', name_loc, ErrorKind.INVALID_IDENTIFIER
            )
            return
        args: Args = {}
        if self._peek_byte() == _HASH:
            self._read_name_and_args(args)
        if not self._expect(_RBRACE, "}"):
            return
        if self._peek_byte() == _LBRACKET:
            self._read_name_and_args(args)
        self._push_command(name, True)
        self._emit(StreamState.COMMAND_START, name_loc, name=name, args=args, has_range=True)

    def _parse_end(self, token: Token) -> None:
        reader = self.reader
        start = token.location.start
        if not self._expect(_LBRACE, "{"):
            return
        name = self._read_identifier()
        if not name:
            self.logger.error(
                'Expected identifier after "\\end{"',
                reader.location(reader.offset),
                ErrorKind.INVALID_IDENTIFIER,
            )
            return
        if not self._expect(_RBRACE, "}"):
            return
        location = reader.location(start, reader.offset)

        top = self._unroll()
        if len(self._commands) == 1:
            self.logger.error(
                f'Got "\\end{{{name}}}", but no command is open',
                location,
                ErrorKind.INVALID_COMMAND,
            )
            return
        if top.fields:
            self.logger.error(
                f'Cannot end command "{top.name}" while one of its fields is open',
                location,
                ErrorKind.INVALID_COMMAND,
            )
            return
        if top.name != name:
            self.logger.error(
                f'Expected "\\end{{{top.name}}}", but got "\\end{{{name}}}"',
                location,
                ErrorKind.INVALID_COMMAND,
            )
            return
        self._commands.pop()
        self._emit(StreamState.RANGE_END, location, name=name)

    def _parse_annotation_start(self, token: Token) -> None:
        start = token.location.start
        b = self._peek_byte()
        if b is None or not is_identifier_start(b):
            # Not an annotation: "<" is data and the backslash escapes
            loc = token.location
            self._buffer.append(_LT, loc.start, loc.start + 1, token.line)
            if b is None:
                self.logger.error(
                    "Trailing backslash at end of input", loc, ErrorKind.INVALID_IDENTIFIER
                )
            else:
                self._append_protected()
            return

        self._flush()
        name = self._read_identifier()
        name_end = self.reader.offset
        args: Args = {}
        self._read_name_and_args(args)
        if self._peek_byte() == _GT:
            offset = self.reader.offset
            self.logger.warning(
                'Ignoring annotation end character ">" after annotation start',
                self.reader.location(offset, offset + 1),
            )
        self._push_command(name, False)
        self._emit(
            StreamState.ANNOTATION_START,
            self.reader.location(start, name_end),
            name=name,
            args=args,
        )

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def _skip_line(self) -> None:
        while True:
            b = self.reader.read()
            if b is None or b == 0x0A:
                return

    def _skip_block_comment(self, token: Token) -> None:
        depth = 1
        while depth:
            t = self.tokenizer.read()
            if t is None:
                self.logger.error(
                    "File ended while being in a block comment",
                    token.location,
                    ErrorKind.UNEXPECTED_END,
                )
                return
            if t.id == self._block_comment_start:
                depth += 1
            elif t.id == self._block_comment_end:
                depth -= 1
        _log.debug("skipped block comment at %d", token.location.start)
