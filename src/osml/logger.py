"""Diagnostic logger consumed by every pipeline component.

The parser never prints. It hands messages to a ``Logger``; what happens
to them is up to the embedding application. ``CollectingLogger`` keeps
them in memory, ``TerminalLogger`` renders them with source snippets.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import IntEnum
from typing import TextIO

from osml.errors import ErrorKind, OsmlError, format_diagnostic
from osml.location import SourceLocation, SourceRegistry


class Severity(IntEnum):
    DEBUG = 0
    NOTE = 1
    WARNING = 2
    ERROR = 3
    FATAL_ERROR = 4

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    Severity.DEBUG: "debug",
    Severity.NOTE: "note",
    Severity.WARNING: "warning",
    Severity.ERROR: "error",
    Severity.FATAL_ERROR: "fatal error",
}


@dataclass(frozen=True, slots=True)
class Message:
    severity: Severity
    message: str
    location: SourceLocation | None = None
    kind: ErrorKind | None = None


class Logger:
    """Base logger. Subclasses override ``_process``."""

    def __init__(self) -> None:
        self.max_severity: Severity | None = None

    def _process(self, msg: Message) -> None:
        pass

    def log(self, msg: Message) -> None:
        if self.max_severity is None or msg.severity > self.max_severity:
            self.max_severity = msg.severity
        self._process(msg)

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    def debug(
        self,
        message: str,
        location: SourceLocation | None = None,
        kind: ErrorKind | None = None,
    ) -> None:
        self.log(Message(Severity.DEBUG, message, location, kind))

    def note(
        self,
        message: str,
        location: SourceLocation | None = None,
        kind: ErrorKind | None = None,
    ) -> None:
        self.log(Message(Severity.NOTE, message, location, kind))

    def warning(
        self,
        message: str,
        location: SourceLocation | None = None,
        kind: ErrorKind | None = None,
    ) -> None:
        self.log(Message(Severity.WARNING, message, location, kind))

    def error(
        self,
        message: str,
        location: SourceLocation | None = None,
        kind: ErrorKind | None = None,
    ) -> None:
        self.log(Message(Severity.ERROR, message, location, kind))

    def log_error(self, exc: OsmlError) -> None:
        severity = Severity.FATAL_ERROR if exc.fatal else Severity.ERROR
        self.log(Message(severity, exc.message, exc.location, exc.kind))

    @property
    def has_errors(self) -> bool:
        return self.max_severity is not None and self.max_severity >= Severity.ERROR

    def fork(self) -> LoggerFork:
        """Return a child that buffers messages until ``commit()``."""
        return LoggerFork(self)


class LoggerFork(Logger):
    """Buffered child logger used for speculative handler calls."""

    def __init__(self, parent: Logger) -> None:
        super().__init__()
        self.parent = parent
        self.messages: list[Message] = []

    def _process(self, msg: Message) -> None:
        self.messages.append(msg)

    def commit(self) -> None:
        """Forward the buffered messages to the parent, then forget them."""
        for msg in self.messages:
            self.parent.log(msg)
        self.purge()

    def purge(self) -> None:
        self.messages.clear()
        self.max_severity = None


class CollectingLogger(Logger):
    """Keeps every message; used by tests and the diagnostics server."""

    def __init__(self, min_severity: Severity = Severity.NOTE) -> None:
        super().__init__()
        self.min_severity = min_severity
        self.messages: list[Message] = []

    def _process(self, msg: Message) -> None:
        if msg.severity >= self.min_severity:
            self.messages.append(msg)

    def errors(self) -> list[Message]:
        return [m for m in self.messages if m.severity >= Severity.ERROR]

    def warnings(self) -> list[Message]:
        return [m for m in self.messages if m.severity == Severity.WARNING]

    def kinds(self) -> list[ErrorKind | None]:
        return [m.kind for m in self.errors()]


class TerminalLogger(Logger):
    """Writes rustc-style diagnostics with source snippets to a text stream."""

    def __init__(
        self,
        registry: SourceRegistry | None = None,
        file: TextIO | None = None,
        min_severity: Severity = Severity.NOTE,
    ) -> None:
        super().__init__()
        self.registry = registry
        self.file = file if file is not None else sys.stderr
        self.min_severity = min_severity

    def _process(self, msg: Message) -> None:
        if msg.severity < self.min_severity:
            return
        text = format_diagnostic(msg.severity.label, msg.message, msg.location, self.registry)
        self.file.write(text + "\n")
