"""Argument schemas and the ``[key=value, ...]`` argument list reader."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from osml.code import CodeTokenFilter, TokenMode
from osml.errors import ErrorKind, OsmlError
from osml.location import SourceLocation
from osml.logger import Logger
from osml.reader import SourceReader
from osml.tokenizer import Tokenizer
from osml.tokens import TEXT, Token

Args = dict[str | int, Any]


class _Required:
    def __repr__(self) -> str:
        return "REQUIRED"


REQUIRED: Any = _Required()

_TYPES: dict[str, tuple[type, ...]] = {
    "any": (object,),
    "string": (str,),
    "int": (int,),
    "float": (float, int),
    "bool": (bool,),
}


@dataclass(frozen=True, slots=True)
class Argument:
    name: str
    type: str = "any"
    default: Any = REQUIRED

    @property
    def required(self) -> bool:
        return self.default is REQUIRED

    def accepts(self, value: Any) -> bool:
        if self.type not in _TYPES:
            raise ValueError(f"unknown argument type {self.type!r}")
        # bool is an int subclass; keep the two apart
        if self.type in ("int", "float") and isinstance(value, bool):
            return False
        return isinstance(value, _TYPES[self.type])


class ArgSchema:
    """Ordered list of named arguments with optional defaults.

    Positional values (integer keys) are assigned to schema entries in
    order. Names outside the schema are kept unless
    *allow_additional* is False.
    """

    def __init__(self, arguments: Sequence[Argument] = (), *, allow_additional: bool = True) -> None:
        self.arguments = tuple(arguments)
        self.allow_additional = allow_additional

    def __bool__(self) -> bool:
        return bool(self.arguments)

    @property
    def names(self) -> list[str]:
        return [a.name for a in self.arguments]

    def validate(
        self,
        args: Args,
        logger: Logger,
        location: SourceLocation | None = None,
    ) -> tuple[bool, Args]:
        """Return ``(ok, args)`` with defaults filled in; problems go to *logger*."""
        ok = True
        result: Args = {}
        by_name = {a.name: a for a in self.arguments}

        for key, value in args.items():
            if isinstance(key, int):
                if key < len(self.arguments):
                    name = self.arguments[key].name
                    if name in args:
                        logger.error(
                            f'Argument "{name}" given both by position and by name',
                            location,
                            ErrorKind.ARGUMENT_VALIDATION,
                        )
                        ok = False
                        continue
                    result[name] = value
                elif self.allow_additional:
                    result[key] = value
                else:
                    logger.error(
                        f"Too many arguments, expected at most {len(self.arguments)}",
                        location,
                        ErrorKind.ARGUMENT_VALIDATION,
                    )
                    ok = False
            elif key in by_name or self.allow_additional:
                result[key] = value
            else:
                expected = ", ".join(f'"{n}"' for n in self.names) or "none"
                logger.error(
                    f'Unknown argument "{key}", expected one of {expected}',
                    location,
                    ErrorKind.ARGUMENT_VALIDATION,
                )
                ok = False

        for arg in self.arguments:
            if arg.name not in result:
                if arg.required:
                    logger.error(
                        f'Missing required argument "{arg.name}"',
                        location,
                        ErrorKind.ARGUMENT_VALIDATION,
                    )
                    ok = False
                else:
                    result[arg.name] = arg.default
                continue
            value = result[arg.name]
            if arg.type == "float" and isinstance(value, int) and not isinstance(value, bool):
                result[arg.name] = float(value)
            elif not arg.accepts(value):
                logger.error(
                    f'Argument "{arg.name}" expects a value of type {arg.type}, '
                    f"got {type(value).__name__}",
                    location,
                    ErrorKind.ARGUMENT_VALIDATION,
                )
                ok = False
        return ok, result


# ---------------------------------------------------------------------------
# Argument list reader
# ---------------------------------------------------------------------------


def convert_value(text: str) -> Any:
    """Type a bare (unquoted) argument value."""
    if text == "true":
        return True
    if text == "false":
        return False
    if text == "null":
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text


def _join_words(words: list[Token]) -> str:
    """Join value pieces, with one space wherever the source had whitespace."""
    parts: list[str] = []
    prev_end: int | None = None
    for w in words:
        if prev_end is not None and w.location.start != prev_end:
            parts.append(" ")
        parts.append(w.content)
        prev_end = w.location.end
    return "".join(parts)


class ArgumentReader:
    """Reads an argument list from *reader*, positioned after the opening ``[``.

    The list is scanned with its own ``Tokenizer`` wrapped in a
    ``CodeTokenFilter`` so quoted values may contain any character.
    Stops right after the closing ``]``.
    """

    def __init__(self, reader: SourceReader, logger: Logger) -> None:
        self.reader = reader
        self.logger = logger
        tokenizer = Tokenizer(reader)
        self._tokens = CodeTokenFilter.from_strings(
            tokenizer,
            {
                '"': TokenMode.STRING_START_END,
                "\\": TokenMode.ESCAPE,
                "\n": TokenMode.LINEBREAK,
                ",": TokenMode.NONE,
                "=": TokenMode.NONE,
                "]": TokenMode.NONE,
            },
        )
        self._string = tokenizer.trie.has('"')
        self._linebreak = tokenizer.trie.has("\n")
        self._comma = tokenizer.trie.has(",")
        self._equals = tokenizer.trie.has("=")
        self._close = tokenizer.trie.has("]")
        self._escape = tokenizer.trie.has("\\")

    def _error(self, message: str, location: SourceLocation | None) -> None:
        self.logger.error(message, location, ErrorKind.ARGUMENT_VALIDATION)

    def read(self) -> Args:
        args: Args = {}
        position = 0
        key: str | None = None
        words: list[Token] = []
        quoted: Token | None = None

        def finish(at: SourceLocation) -> None:
            nonlocal position, key, quoted
            if quoted is not None:
                value: Any = quoted.content
            elif words:
                value = convert_value(_join_words(words))
            elif key is not None:
                self._error(f'Missing value for argument "{key}"', at)
                key = None
                return
            else:
                return
            if key is None:
                args[position] = value
                position += 1
            elif key in args:
                self._error(f'Argument "{key}" given twice', at)
            else:
                args[key] = value
            key = None
            quoted = None
            words.clear()

        while True:
            try:
                t = self._tokens.read()
            except OsmlError as exc:
                if exc.fatal:
                    raise
                self.logger.log_error(exc)
                finish(self.reader.location(self.reader.offset))
                return args
            if t is None:
                loc = self.reader.location(self.reader.offset)
                self.logger.error(
                    'Input ended inside an argument list, expected "]"',
                    loc,
                    ErrorKind.UNEXPECTED_END,
                )
                finish(loc)
                return args
            if t.id == self._close:
                finish(t.location)
                return args
            if t.id == self._comma:
                finish(t.location)
            elif t.id == self._equals:
                if key is not None or quoted is not None or len(words) != 1:
                    self._error('Unexpected "=" in argument list', t.location)
                else:
                    key = words[0].content
                    words.clear()
            elif t.id == self._string:
                if quoted is not None or words:
                    self._error("Expected \",\" between argument values", t.location)
                quoted = t
            elif t.id == TEXT or t.id == self._escape:
                if quoted is not None:
                    self._error("Expected \",\" between argument values", t.location)
                words.append(t)
            elif t.id == self._linebreak:
                continue
