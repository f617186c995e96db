"""Per-state handlers driven by the parser stack.

A handler receives the structural callbacks for one open command or
annotation and turns them into parse events (or anything else the
embedding application wants). Returning False from ``start_*``,
``field_start`` or ``data`` marks the frame invalid without popping it.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

from osml.errors import ErrorKind, OsmlError
from osml.events import (
    AnnotationEnd,
    AnnotationStart,
    CommandStart,
    Data,
    FieldEnd,
    FieldStart,
    ParseEvent,
    TokenEnd,
    TokenStart,
)
from osml.location import SourceId, SourceLocation, SourceRegistry
from osml.logger import Logger
from osml.scope import Scope, ScopeNode
from osml.tokens import EMPTY, TokenId, is_namespaced_identifier
from osml.whitespace import WhitespaceMode

if TYPE_CHECKING:
    from osml.arguments import Args
    from osml.registry import TokenRegistry
    from osml.resolver import SourceResolver
    from osml.states import State, StateGraph

ConstantResolver = Callable[[str, SourceLocation], "str | None"]

DEFAULT_MAX_INCLUDE_DEPTH = 16


class AnnotationType(Enum):
    START = auto()
    END = auto()


class EndTokenResult(Enum):
    ENDED_NONE = auto()  # token does not end anything here
    ENDED_HIDDEN = auto()  # token ended something inside the handler
    ENDED_THIS = auto()  # token ends the handler itself


@dataclass
class ParserContext:
    """Everything shared by the components of one pipeline."""

    graph: StateGraph
    logger: Logger
    registry: SourceRegistry = field(default_factory=SourceRegistry)
    scope: Scope = field(default_factory=Scope)
    events: deque[ParseEvent] = field(default_factory=deque)
    resolver: SourceResolver | None = None
    constant_resolver: ConstantResolver | None = None
    whitespace_mode: WhitespaceMode = WhitespaceMode.COLLAPSE
    max_include_depth: int = DEFAULT_MAX_INCLUDE_DEPTH
    include_stack: list[SourceId] = field(default_factory=list)

    def emit(self, event: ParseEvent) -> None:
        self.events.append(event)


@dataclass(frozen=True, slots=True)
class HandlerData:
    ctx: ParserContext
    state: State
    name: str
    location: SourceLocation
    tokens: TokenRegistry | None = None


class Handler:
    """Base handler; rejects everything it is not told how to handle."""

    def __init__(self, data: HandlerData) -> None:
        self.ctx = data.ctx
        self.state = data.state
        self.name = data.name
        self.start_location = data.location
        # Location of the event currently being handled, set by the stack
        self.location = data.location
        self.args: Args = {}
        self._registry = data.tokens
        self._logger: Logger | None = None
        self._own_tokens: list[TokenId] = []

    @property
    def logger(self) -> Logger:
        return self._logger if self._logger is not None else self.ctx.logger

    def set_logger(self, logger: Logger) -> None:
        self._logger = logger

    def reset_logger(self) -> None:
        self._logger = None

    # ------------------------------------------------------------------
    # Token registration
    # ------------------------------------------------------------------

    def register_token(self, token: str) -> TokenId:
        if self._registry is None:
            return EMPTY
        id = self._registry.register_token(token)
        if id != EMPTY:
            self._own_tokens.append(id)
        return id

    def unregister_tokens(self) -> None:
        if self._registry is not None:
            for id in reversed(self._own_tokens):
                self._registry.unregister_token(id)
        self._own_tokens.clear()

    def owns_token(self, id: TokenId) -> bool:
        return id in self._own_tokens

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def start_command(self, name: str, args: Args) -> bool:
        return False

    def start_annotation(self, name: str, args: Args, type: AnnotationType) -> bool:
        return False

    def start_token(self, id: TokenId) -> bool:
        return False

    def end_token(self, id: TokenId) -> EndTokenResult:
        return EndTokenResult.ENDED_NONE

    def end(self) -> None:
        pass

    def field_start(self, is_default: bool, idx: int) -> tuple[bool, bool]:
        """Return ``(valid, is_default)``; a handler may turn a field into its default field."""
        return False, is_default

    def field_end(self) -> None:
        pass

    def data(self, content: str) -> bool:
        return False


class EmptyHandler(Handler):
    """Accepts commands, fields and data silently; no annotations or tokens.

    Used for frames pushed while reconstructing the state of an existing
    scope and for states without a handler of their own.
    """

    def start_command(self, name: str, args: Args) -> bool:
        self.args = args
        return True

    def field_start(self, is_default: bool, idx: int) -> tuple[bool, bool]:
        return True, is_default

    def data(self, content: str) -> bool:
        return True


class EventHandler(Handler):
    """Turns callbacks into parse events and mirrors itself in the scope."""

    def __init__(self, data: HandlerData) -> None:
        super().__init__(data)
        self._node: ScopeNode | None = None

    def _push_node(self) -> None:
        if self.state.created_types:
            node_type = sorted(self.state.created_types)[0]
            self._node = ScopeNode(node_type, self.name, self.start_location, dict(self.args))
            self.ctx.scope.push(self._node)

    def _start(self, args: Args) -> None:
        self.args = args
        self._push_node()
        for token in self.state.tokens:
            self.register_token(token)

    def start_command(self, name: str, args: Args) -> bool:
        self._start(args)
        self.ctx.emit(CommandStart(name, args, self.location))
        return True

    def start_annotation(self, name: str, args: Args, type: AnnotationType) -> bool:
        if type == AnnotationType.START:
            self._start(args)
            self.ctx.emit(AnnotationStart(name, args, self.location))
        else:
            self.ctx.emit(AnnotationEnd(self.name, self.args, self.location))
        return True

    def start_token(self, id: TokenId) -> bool:
        if not self.owns_token(id):
            return False
        self.ctx.emit(TokenStart(id, self.location))
        return True

    def end_token(self, id: TokenId) -> EndTokenResult:
        if not self.owns_token(id):
            return EndTokenResult.ENDED_NONE
        self.ctx.emit(TokenEnd(id, self.location))
        return EndTokenResult.ENDED_HIDDEN

    def end(self) -> None:
        if self._node is not None:
            self.ctx.scope.pop_node(self._node)
            self._node = None

    def field_start(self, is_default: bool, idx: int) -> tuple[bool, bool]:
        self.ctx.emit(FieldStart(is_default, self.location))
        return True, is_default

    def field_end(self) -> None:
        self.ctx.emit(FieldEnd(self.location))

    def data(self, content: str) -> bool:
        magic = not self.state.primitive and is_namespaced_identifier(content)
        if magic and self.ctx.constant_resolver is not None:
            resolved = self.ctx.constant_resolver(content, self.location)
            if resolved is not None:
                content = resolved
        self.ctx.emit(Data(content, self.location, magic))
        return True


class DocumentHandler(EventHandler):
    """Implicit document root: only data and tokens show up as events."""

    def start_command(self, name: str, args: Args) -> bool:
        self._start(args)
        return True

    def field_start(self, is_default: bool, idx: int) -> tuple[bool, bool]:
        return True, True

    def field_end(self) -> None:
        pass


class IncludeHandler(Handler):
    """Parses another source in place, resuming in the current scope."""

    def start_command(self, name: str, args: Args) -> bool:
        from osml.parser import OsmlParser

        self.args = args
        ctx = self.ctx
        if ctx.resolver is None:
            self.logger.error(
                "Cannot include sources, no source resolver configured",
                self.location,
                ErrorKind.INVALID_COMMAND,
            )
            return False
        # The outermost source is on the include stack too
        if len(ctx.include_stack) > ctx.max_include_depth:
            self.logger.error(
                f"Maximum include depth ({ctx.max_include_depth}) exceeded",
                self.location,
                ErrorKind.INVALID_COMMAND,
            )
            return False

        path = str(args["src"])
        try:
            source_id, data = ctx.resolver.resolve(path, self.location.source_id)
        except OsmlError as exc:
            if exc.location is None:
                exc.location = self.location
            raise
        if source_id in ctx.include_stack:
            self.logger.error(
                f'Circular include of "{path}"',
                self.location,
                ErrorKind.INVALID_COMMAND,
            )
            return False

        ctx.include_stack.append(source_id)
        try:
            OsmlParser(data, ctx, source_id=source_id, nested=True).run()
        finally:
            ctx.include_stack.pop()
        return True

    def field_start(self, is_default: bool, idx: int) -> tuple[bool, bool]:
        return False, is_default


# ---------------------------------------------------------------------------
# User handlers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HandlerCallbacks:
    """Function record for ``UserHandler``; each callback gets the handler first."""

    start_command: Callable[[Handler, str, Any], bool] | None = None
    start_annotation: Callable[[Handler, str, Any, AnnotationType], bool] | None = None
    start_token: Callable[[Handler, TokenId], bool] | None = None
    end_token: Callable[[Handler, TokenId], EndTokenResult] | None = None
    end: Callable[[Handler], None] | None = None
    field_start: Callable[[Handler, bool, int], tuple[bool, bool]] | None = None
    field_end: Callable[[Handler], None] | None = None
    data: Callable[[Handler, str], bool] | None = None


class UserHandler(Handler):
    """Handler whose behaviour comes from a ``HandlerCallbacks`` record.

    Missing callbacks fall back to ``EmptyHandler`` behaviour.
    """

    def __init__(self, data: HandlerData, callbacks: HandlerCallbacks) -> None:
        super().__init__(data)
        self.callbacks = callbacks

    @classmethod
    def factory(cls, callbacks: HandlerCallbacks) -> Callable[[HandlerData], UserHandler]:
        def create(data: HandlerData) -> UserHandler:
            return cls(data, callbacks)

        return create

    def start_command(self, name: str, args: Args) -> bool:
        self.args = args
        cb = self.callbacks.start_command
        return cb(self, name, args) if cb else True

    def start_annotation(self, name: str, args: Args, type: AnnotationType) -> bool:
        if type == AnnotationType.START:
            self.args = args
        cb = self.callbacks.start_annotation
        return cb(self, name, args, type) if cb else False

    def start_token(self, id: TokenId) -> bool:
        cb = self.callbacks.start_token
        return cb(self, id) if cb else False

    def end_token(self, id: TokenId) -> EndTokenResult:
        cb = self.callbacks.end_token
        return cb(self, id) if cb else EndTokenResult.ENDED_NONE

    def end(self) -> None:
        if self.callbacks.end:
            self.callbacks.end(self)

    def field_start(self, is_default: bool, idx: int) -> tuple[bool, bool]:
        cb = self.callbacks.field_start
        return cb(self, is_default, idx) if cb else (True, is_default)

    def field_end(self) -> None:
        if self.callbacks.field_end:
            self.callbacks.field_end(self)

    def data(self, content: str) -> bool:
        cb = self.callbacks.data
        return cb(self, content) if cb else True
