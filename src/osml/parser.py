"""Pull driver connecting the stream parser to the parser stack."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import BinaryIO

from osml.errors import OsmlError
from osml.events import End, ParseEvent
from osml.handlers import DEFAULT_MAX_INCLUDE_DEPTH, ConstantResolver, ParserContext
from osml.location import SourceId, SourceRegistry
from osml.logger import CollectingLogger, Logger
from osml.reader import SourceReader
from osml.resolver import SourceResolver
from osml.stack import ParserStack
from osml.states import StateGraph, default_graph
from osml.stream import OsmlStreamParser, StreamEvent, StreamState
from osml.whitespace import WhitespaceMode

_log = logging.getLogger(__name__)


class OsmlParser:
    """Parses one source into ``ctx.events``.

    A parser on a context with an empty scope opens the implicit
    ``document`` root and finishes with an ``End`` event. A *nested*
    parser (used for includes) resumes inside the existing scope and
    emits no ``End``.
    """

    def __init__(
        self,
        source: bytes | BinaryIO,
        ctx: ParserContext,
        *,
        source_id: SourceId = 0,
        nested: bool = False,
    ) -> None:
        if isinstance(source, (bytes, bytearray)):
            reader = SourceReader(bytes(source), source_id=source_id)
        else:
            reader = SourceReader(stream=source, source_id=source_id)
        self.ctx = ctx
        self.source_id = source_id
        self.nested = nested
        self.reader = reader
        self.stream = OsmlStreamParser(reader, ctx.logger, ctx.whitespace_mode)
        self.stack: ParserStack | None = None
        self._done = False

    def _start(self) -> ParserStack:
        ctx = self.ctx
        fresh = not ctx.scope
        stack = ParserStack(ctx, token_source=self.stream)
        if fresh:
            stack.push_root("document", self.reader.location(0))
        if not self.nested:
            ctx.include_stack.append(self.source_id)
        return stack

    def _dispatch(self, stack: ParserStack, ev: StreamEvent) -> None:
        state = ev.state
        if state == StreamState.DATA:
            stack.data(ev.content, ev.location)
        elif state == StreamState.COMMAND_START:
            stack.command_start(ev.name, ev.args, ev.has_range, ev.location)
        elif state == StreamState.ANNOTATION_START:
            stack.annotation_start(ev.name, ev.args, ev.has_range, ev.location)
        elif state == StreamState.ANNOTATION_END:
            stack.annotation_end(ev.name, ev.element_name, ev.location)
        elif state == StreamState.FIELD_START:
            stack.field_start(ev.is_default, ev.location)
        elif state == StreamState.FIELD_END:
            stack.field_end(ev.location)
        elif state == StreamState.RANGE_END:
            stack.range_end(ev.location)
        elif state == StreamState.TOKEN:
            if ev.token is not None:
                stack.token(ev.token)
        elif state == StreamState.END:
            stack.close(ev.location)
            if not self.nested:
                self.ctx.include_stack.remove(self.source_id)
                self.ctx.emit(End(ev.location))
            self._done = True

    def step(self) -> bool:
        """Process one stream event. Returns False once the input is exhausted.

        Fatal errors are logged (by the outermost parser only) and re-raised.
        """
        if self._done:
            return False
        try:
            if self.stack is None:
                self.stack = self._start()
            self._dispatch(self.stack, self.stream.parse())
        except OsmlError as exc:
            self._done = True
            if not self.nested:
                _log.debug("fatal error: %s", exc.message)
                self.ctx.logger.log_error(exc)
            raise
        return not self._done

    def run(self) -> None:
        """Parse the whole source, leaving the events in ``ctx.events``."""
        while self.step():
            pass

    def events(self) -> Iterator[ParseEvent]:
        """Yield events as they become available."""
        while True:
            more = self.step()
            while self.ctx.events:
                yield self.ctx.events.popleft()
            if not more:
                return

    def __iter__(self) -> Iterator[ParseEvent]:
        return self.events()


def parse_events(
    source: bytes | str,
    *,
    name: str = "<input>",
    graph: StateGraph | None = None,
    logger: Logger | None = None,
    registry: SourceRegistry | None = None,
    whitespace_mode: WhitespaceMode = WhitespaceMode.COLLAPSE,
    resolver: SourceResolver | None = None,
    constant_resolver: ConstantResolver | None = None,
    max_include_depth: int = DEFAULT_MAX_INCLUDE_DEPTH,
) -> list[ParseEvent]:
    """Parse *source* completely and return its events.

    Diagnostics go to *logger* (a fresh ``CollectingLogger`` when omitted).
    A *resolver* must share *registry* so included sources get their own ids.
    """
    if isinstance(source, str):
        source = source.encode("utf-8")
    if registry is None:
        registry = SourceRegistry()
    source_id = registry.find(name)
    if source_id is None:
        source_id = registry.register(name, source)
    else:
        registry.set_data(source_id, source)
    ctx = ParserContext(
        graph if graph is not None else default_graph(),
        logger if logger is not None else CollectingLogger(),
        registry,
        resolver=resolver,
        constant_resolver=constant_resolver,
        whitespace_mode=whitespace_mode,
        max_include_depth=max_include_depth,
    )
    return list(OsmlParser(source, ctx, source_id=source_id).events())
