"""Streaming parser for the OSML semantic markup language."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from osml.events import ParseEvent
    from osml.logger import Logger
    from osml.whitespace import WhitespaceMode

__version__ = "0.1.0"


def parse(
    source: str | bytes,
    name: str = "<input>",
    logger: Logger | None = None,
    whitespace_mode: WhitespaceMode | None = None,
) -> list[ParseEvent]:
    """Parse OSML source with the default state graph and return its events."""
    from osml.parser import parse_events
    from osml.whitespace import WhitespaceMode

    return parse_events(
        source,
        name=name,
        logger=logger,
        whitespace_mode=whitespace_mode or WhitespaceMode.COLLAPSE,
    )
