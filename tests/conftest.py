"""Shared test fixtures and helpers."""

from __future__ import annotations

import pytest

from osml.events import Data, ParseEvent
from osml.logger import CollectingLogger, Severity
from osml.parser import parse_events
from osml.reader import SourceReader
from osml.stream import OsmlStreamParser, StreamEvent, StreamState
from osml.whitespace import WhitespaceMode


@pytest.fixture
def logger() -> CollectingLogger:
    """A logger that keeps warnings and errors for inspection."""
    return CollectingLogger(min_severity=Severity.WARNING)


@pytest.fixture
def make_reader():
    """Return a helper building a closed reader, optionally fed in chunks."""

    def _make(data: bytes | str, chunk: int | None = None) -> SourceReader:
        if isinstance(data, str):
            data = data.encode("utf-8")
        if chunk is None:
            return SourceReader(data)
        reader = SourceReader()
        for i in range(0, len(data), chunk):
            reader.feed(data[i : i + chunk])
        reader.close()
        return reader

    return _make


@pytest.fixture
def events(logger):
    """Return a helper that parses source into a list of events.

    Diagnostics end up in the ``logger`` fixture unless one is passed.
    """

    def _events(source: str | bytes, **kwargs) -> list[ParseEvent]:
        kwargs.setdefault("logger", logger)
        return parse_events(source, **kwargs)

    return _events


@pytest.fixture
def stream(logger):
    """Return a helper that runs the stream parser until END (inclusive)."""

    def _stream(
        source: str | bytes,
        mode: WhitespaceMode = WhitespaceMode.COLLAPSE,
    ) -> list[StreamEvent]:
        if isinstance(source, str):
            source = source.encode("utf-8")
        parser = OsmlStreamParser(SourceReader(source), logger, mode)
        result: list[StreamEvent] = []
        while True:
            ev = parser.parse()
            result.append(ev)
            if ev.state == StreamState.END:
                return result

    return _stream


def assert_kinds(events: list[ParseEvent], expected: list[str]) -> None:
    """Assert that the event class names match the expected list."""
    actual = [type(e).__name__ for e in events]
    assert actual == expected, f"Expected {expected}, got {actual}"


def assert_states(events: list[StreamEvent], expected: list[StreamState]) -> None:
    actual = [e.state for e in events]
    assert actual == expected, f"Expected {expected}, got {actual}"


def data_of(events: list) -> list[str]:
    """Return the content of every data event, parse or stream level."""
    result: list[str] = []
    for e in events:
        if isinstance(e, Data):
            result.append(e.content)
        elif isinstance(e, StreamEvent) and e.state == StreamState.DATA:
            result.append(e.content)
    return result
