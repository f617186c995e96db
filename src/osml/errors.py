"""Error kinds and the loggable error type with formatted source context."""

from __future__ import annotations

from enum import Enum, auto
from typing import TYPE_CHECKING

from osml.location import SourceLocation

if TYPE_CHECKING:
    from osml.location import SourceRegistry


class ErrorKind(Enum):
    IO = auto()  # underlying stream failed
    ENCODING = auto()  # malformed linebreak or multiline token
    INVALID_IDENTIFIER = auto()
    INVALID_COMMAND = auto()
    ANNOTATION_MISMATCH = auto()
    FIELD_AFTER_DEFAULT = auto()
    UNEXPECTED_END = auto()
    ARGUMENT_VALIDATION = auto()
    INCLUDE_AMBIGUOUS = auto()

    @property
    def fatal(self) -> bool:
        """Fatal kinds terminate the stream instead of invalidating one frame."""
        return self in _FATAL


_FATAL = frozenset({ErrorKind.IO, ErrorKind.ENCODING, ErrorKind.INCLUDE_AMBIGUOUS})


class OsmlError(Exception):
    """An error raised by a pipeline component, carrying kind and location.

    Structural errors are caught by the parser stack and logged; fatal ones
    are logged and then re-raised to the caller.
    """

    def __init__(
        self,
        message: str,
        location: SourceLocation | None = None,
        kind: ErrorKind = ErrorKind.INVALID_COMMAND,
    ) -> None:
        self.message = message
        self.location = location
        self.kind = kind
        super().__init__(message)

    @property
    def fatal(self) -> bool:
        return self.kind.fatal

    def format(self, registry: SourceRegistry | None = None) -> str:
        return format_diagnostic("error", self.message, self.location, registry)


class MultilineTokenError(OsmlError):
    """A non-linebreak token crossed a line boundary."""

    def __init__(self, location: SourceLocation | None = None) -> None:
        super().__init__(
            "Token spans multiple lines, which is not allowed here",
            location,
            ErrorKind.ENCODING,
        )


def format_diagnostic(
    severity: str,
    message: str,
    location: SourceLocation | None,
    registry: SourceRegistry | None,
) -> str:
    """Render *message* with a source snippet and caret underline.

    Falls back to a single ``severity: message`` line when the location
    cannot be resolved against *registry*.
    """
    head = f"{severity}: {message}"
    if location is None or registry is None or not location.valid:
        return head
    if location.source_id not in registry:
        return head

    filename = registry.name(location.source_id)
    line, col = registry.position(location.source_id, location.start)
    end_line, end_col = registry.position(location.source_id, location.end)
    source_line = registry.line_text(location.source_id, line)

    # Underline the full range when on one line, otherwise to end of line
    if end_line == line:
        underline_len = max(1, end_col - col)
    else:
        underline_len = max(1, len(source_line) - col + 1)

    pad = " " * (col - 1)
    carets = "^" * underline_len

    line_num = str(line)
    gutter_width = len(line_num) + 1

    blank_gutter = " " * gutter_width + "|"
    line_gutter = f"{line_num:>{gutter_width - 1}} |"

    return (
        f"{head}\n"
        f"{' ' * gutter_width}--> {filename}:{line}:{col}\n"
        f"{blank_gutter}\n"
        f"{line_gutter} {source_line}\n"
        f"{blank_gutter} {pad}{carets}"
    )
