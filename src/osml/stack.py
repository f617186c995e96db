"""Pushdown automaton driving the handlers of open commands and annotations."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from osml.arguments import Args
from osml.errors import ErrorKind, OsmlError
from osml.handlers import (
    AnnotationType,
    EmptyHandler,
    EndTokenResult,
    Handler,
    HandlerData,
    ParserContext,
)
from osml.location import NO_LOCATION, SourceLocation
from osml.registry import TokenRegistry, TokenSource
from osml.states import NONE, State, StateDeductor
from osml.tokens import Token, TokenId, is_namespaced_identifier

_log = logging.getLogger(__name__)

T = TypeVar("T")

# State of placeholder frames pushed for commands that could not be started
INVALID = State("invalid")


@dataclass(eq=False)
class HandlerFrame:
    """One open command or annotation together with its field bookkeeping."""

    handler: Handler
    state: State
    location: SourceLocation
    name: str = ""
    args: Args = field(default_factory=dict)
    valid: bool = True
    started: bool = False
    implicit: bool = False
    has_range: bool = False
    root: bool = False
    annotation: bool = False
    in_field: bool = False
    in_default_field: bool = False
    in_implicit_default_field: bool = False
    in_valid_field: bool = False
    had_default_field: bool = False
    field_index: int = 0
    # Stray "{" opened while already inside a field, balanced by "}"
    extra_fields: int = 0
    open_tokens: list[TokenId] = field(default_factory=list)
    # Annotations that were opened on top of this frame and now span its content
    dormant: list[HandlerFrame] = field(default_factory=list)

    @property
    def token_stack_depth(self) -> int:
        return len(self.open_tokens)

    def field_start(self, is_default: bool, is_implicit: bool, is_valid: bool) -> None:
        self.in_field = True
        self.in_default_field = is_default or is_implicit
        self.in_implicit_default_field = is_implicit
        self.in_valid_field = is_valid
        self.field_index += 1

    def field_end(self) -> None:
        self.had_default_field = self.had_default_field or self.in_default_field
        self.in_field = False
        self.in_default_field = False
        self.in_implicit_default_field = False
        self.in_valid_field = False


class ParserStack:
    """Stack of ``HandlerFrame``s fed by the stream parser.

    Every structural callback first ends frames that can no longer
    receive content ("overdue" frames), then forwards to the handler on
    top. Errors are logged and invalidate the affected frame; the stack
    keeps its bookkeeping so later brackets still balance.
    """

    def __init__(self, ctx: ParserContext, token_source: TokenSource | None = None) -> None:
        self.ctx = ctx
        self.graph = ctx.graph
        self.logger = ctx.logger
        self.tokens = TokenRegistry(token_source) if token_source is not None else None
        self._frames: list[HandlerFrame] = []
        self._location: SourceLocation = NO_LOCATION
        if ctx.scope:
            self._deduce_state()

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def frames(self) -> list[HandlerFrame]:
        return list(self._frames)

    @property
    def top(self) -> HandlerFrame | None:
        return self._frames[-1] if self._frames else None

    @property
    def current_state(self) -> State:
        return self._frames[-1].state if self._frames else NONE

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _make_handler(self, state: State, name: str, location: SourceLocation) -> Handler:
        ctor = state.handler or EmptyHandler
        return ctor(HandlerData(self.ctx, state, name, location, self.tokens))

    def _invoke(self, frame: HandlerFrame, fn: Callable[..., T], *args: Any, fail: T) -> T:
        """Call a handler method, turning a non-fatal ``OsmlError`` into *fail*."""
        frame.handler.location = self._location
        try:
            return fn(*args)
        except OsmlError as exc:
            if exc.location is None:
                exc.location = self._location
            if exc.fatal:
                raise
            frame.handler.logger.log_error(exc)
            frame.valid = False
            return fail

    def _deduce_state(self) -> None:
        scope = self.ctx.scope
        signature = scope.type_signature()
        found = StateDeductor(signature, self.graph.states).deduce()
        leaf = scope.leaf()
        location = leaf.location if leaf is not None and leaf.location else NO_LOCATION
        if len(found) != 1:
            raise OsmlError("Cannot deduce parser state.", location, ErrorKind.INCLUDE_AMBIGUOUS)
        state = found[0]
        _log.debug("deduced state %r from scope %s", state, signature)
        frame = HandlerFrame(
            self._make_handler(state, state.name, location),
            state,
            location,
            state.name,
            implicit=True,
            root=True,
        )
        frame.field_start(True, False, True)
        self._frames.append(frame)

    def _push_placeholder(
        self,
        name: str,
        args: Args,
        has_range: bool,
        location: SourceLocation,
        annotation: bool,
    ) -> None:
        handler = self._make_handler(INVALID, name, location)
        self._frames.append(
            HandlerFrame(
                handler,
                INVALID,
                location,
                name,
                args,
                valid=False,
                has_range=has_range,
                annotation=annotation,
            )
        )

    def _log_unexpected(self, name: str, current: State, location: SourceLocation) -> None:
        expected = self.graph.expected(current)
        if not expected:
            message = f'No nested elements allowed, but got "{name}"'
        elif len(expected) == 1:
            message = f'Expected "{expected[0]}", but got "{name}"'
        else:
            names = ", ".join(f'"{e}"' for e in expected)
            message = f'Expected one of {names}, but got "{name}"'
        self.logger.error(message, location, ErrorKind.INVALID_COMMAND)

    # ------------------------------------------------------------------
    # Frame lifecycle
    # ------------------------------------------------------------------

    def _close_open_tokens(self, frame: HandlerFrame) -> None:
        """Report and end tokens left open when their field or frame ends."""
        for id in reversed(frame.open_tokens):
            token = self.tokens.lookup(id) if self.tokens is not None else None
            self.logger.error(
                f'Token "{token or id}" was not closed before the end of "{frame.name}"',
                self._location,
                ErrorKind.UNEXPECTED_END,
            )
            if frame.valid:
                self._invoke(frame, frame.handler.end_token, id, fail=EndTokenResult.ENDED_NONE)
        frame.open_tokens.clear()

    def _finish_frame(self, frame: HandlerFrame) -> None:
        self._close_open_tokens(frame)
        for annotation in reversed(frame.dormant):
            self.logger.error(
                f'Annotation "{annotation.name}" was not closed',
                annotation.location,
                ErrorKind.UNEXPECTED_END,
            )
            self._finish_frame(annotation)
        frame.dormant.clear()

        if frame.started and not frame.implicit:
            if frame.in_field and frame.in_valid_field and frame.valid:
                self._invoke(frame, frame.handler.field_end, fail=None)
            frame.field_end()
            self._invoke(frame, frame.handler.end, fail=None)
        frame.handler.unregister_tokens()

    def _end_current(self) -> None:
        frame = self._frames.pop()
        _log.debug("end %r (depth %d)", frame.name, len(self._frames))
        self._finish_frame(frame)

    def _unroll_top(self) -> None:
        """End the top frame; annotations survive as dormant frames of their parent."""
        frame = self._frames[-1]
        if frame.annotation and len(self._frames) > 1:
            self._frames.pop()
            self._frames[-1].dormant.append(frame)
        else:
            self._end_current()

    def _end_overdue_handlers(self) -> None:
        while self._frames:
            top = self._frames[-1]
            if top.in_field or top.has_range or top.root:
                return
            if top.annotation:
                self._unroll_top()
            elif top.had_default_field or not top.valid:
                self._end_current()
            else:
                return

    def _ensure_handler_is_in_field(self) -> bool:
        top = self._frames[-1]
        if top.in_field:
            return True
        if not top.valid:
            top.field_start(True, True, False)
            return True
        if top.had_default_field:
            return False
        ok, _ = self._invoke(top, top.handler.field_start, True, top.field_index, fail=(False, True))
        if not ok:
            return False
        top.field_start(True, True, True)
        return True

    # ------------------------------------------------------------------
    # Commands and annotations
    # ------------------------------------------------------------------

    def push_root(self, name: str = "document", location: SourceLocation = NO_LOCATION) -> None:
        """Open the implicit root frame; it only ends with ``close()``."""
        self.command_start(name, {}, True, location)
        self._frames[-1].root = True

    def command_start(
        self,
        name: str,
        args: Args,
        has_range: bool = False,
        location: SourceLocation = NO_LOCATION,
        annotation: bool = False,
    ) -> None:
        self._location = location
        _log.debug("command_start %r range=%s (depth %d)", name, has_range, len(self._frames))
        if not is_namespaced_identifier(name):
            self.logger.error(
                f'"{name}" is not a valid identifier', location, ErrorKind.INVALID_IDENTIFIER
            )
            self._push_placeholder(name, args, has_range, location, annotation)
            return

        while True:
            self._end_overdue_handlers()
            top = self.top

            if top is not None and not top.valid:
                self._ensure_handler_is_in_field()
                self._push_placeholder(name, args, has_range, location, annotation)
                return
            if top is not None and top.in_field and not top.in_valid_field:
                self._push_placeholder(name, args, has_range, location, annotation)
                return

            current = top.state if top is not None else NONE
            target = self.graph.find(name, current)
            if target is None:
                if (
                    top is not None
                    and not (top.has_range or top.root)
                    and (top.in_implicit_default_field or not top.in_field)
                ):
                    self._unroll_top()
                    continue
                self._log_unexpected(name, current, location)
                self._push_placeholder(name, args, has_range, location, annotation)
                return

            if annotation and not current.supports_annotations:
                self.logger.error(
                    f'Cannot start annotation "{name}" here, annotations are not supported',
                    location,
                    ErrorKind.INVALID_COMMAND,
                )
                self._push_placeholder(name, args, has_range, location, annotation)
                return

            if top is not None and not self._ensure_handler_is_in_field():
                if not (top.has_range or top.root):
                    self._unroll_top()
                    continue
                self.logger.error(
                    f'Command "{name}" cannot be placed here, "{top.name}" accepts no content',
                    location,
                    ErrorKind.INVALID_COMMAND,
                )
                self._push_placeholder(name, args, has_range, location, annotation)
                return

            handler = self._make_handler(target, name, location)
            frame = HandlerFrame(
                handler,
                target,
                location,
                name,
                args,
                has_range=has_range,
                annotation=annotation,
            )
            self._frames.append(frame)

            fork = self.logger.fork()
            handler.set_logger(fork)
            try:
                ok, validated = target.arguments.validate(args, fork, location)
                started = False
                if ok:
                    frame.args = validated
                    if annotation:
                        started = self._invoke(
                            frame,
                            handler.start_annotation,
                            name,
                            validated,
                            AnnotationType.START,
                            fail=False,
                        )
                    else:
                        started = self._invoke(
                            frame, handler.start_command, name, validated, fail=False
                        )
            except OsmlError:
                fork.commit()
                handler.reset_logger()
                raise

            if (
                not started
                and top is not None
                and top.in_implicit_default_field
                and not (top.has_range or top.root)
            ):
                # Retry one level up; the command may be valid there
                fork.purge()
                handler.reset_logger()
                handler.unregister_tokens()
                self._frames.pop()
                self._end_current()
                continue

            frame.started = started
            frame.valid = started
            fork.commit()
            handler.reset_logger()
            return

    def annotation_start(
        self,
        name: str,
        args: Args,
        has_range: bool = False,
        location: SourceLocation = NO_LOCATION,
    ) -> None:
        self.command_start(name, args, has_range, location, annotation=True)

    def _find_annotation(
        self, name: str, element_name: str
    ) -> tuple[int, HandlerFrame, bool] | None:
        def matches(frame: HandlerFrame) -> bool:
            if not frame.annotation:
                return False
            if name and frame.name != name:
                return False
            return not element_name or frame.args.get("name") == element_name

        for i in range(len(self._frames) - 1, -1, -1):
            frame = self._frames[i]
            for dormant in reversed(frame.dormant):
                if matches(dormant):
                    return i, dormant, True
            if matches(frame):
                return i, frame, False
        return None

    def annotation_end(
        self,
        name: str,
        element_name: str = "",
        location: SourceLocation = NO_LOCATION,
    ) -> None:
        self._location = location
        _log.debug("annotation_end %r #%r", name, element_name)
        found = self._find_annotation(name, element_name)
        if found is None:
            what = f'"{name}"' if name else "any annotation"
            self.logger.error(
                f"Got annotation end, but {what} is not open",
                location,
                ErrorKind.ANNOTATION_MISMATCH,
            )
            return

        index, frame, dormant = found
        if dormant:
            self._frames[index].dormant.remove(frame)
        else:
            while len(self._frames) > index + 1:
                self._unroll_top()
            self._frames.pop()

        # Annotations opened inside this one that are still pending
        for inner in reversed(frame.dormant):
            self.logger.error(
                f'Annotation "{inner.name}" was not closed',
                inner.location,
                ErrorKind.UNEXPECTED_END,
            )
            self._finish_frame(inner)
        frame.dormant.clear()

        if frame.started:
            if frame.in_field and frame.in_valid_field and frame.valid:
                self._invoke(frame, frame.handler.field_end, fail=None)
            frame.field_end()
            self._invoke(
                frame,
                frame.handler.start_annotation,
                frame.name,
                frame.args,
                AnnotationType.END,
                fail=False,
            )
            self._invoke(frame, frame.handler.end, fail=None)
        frame.handler.unregister_tokens()

    def range_end(self, location: SourceLocation = NO_LOCATION) -> None:
        self._location = location
        index = next(
            (
                i
                for i in range(len(self._frames) - 1, -1, -1)
                if self._frames[i].has_range and not self._frames[i].root
            ),
            None,
        )
        if index is None:
            self.logger.error(
                "Got range end, but there is no command for which to end the range.",
                location,
                ErrorKind.INVALID_COMMAND,
            )
            return
        _log.debug("range_end %r", self._frames[index].name)
        while len(self._frames) > index + 1:
            self._unroll_top()
        # A range always has a field, even when it is empty
        self._ensure_handler_is_in_field()
        self._end_current()

    # ------------------------------------------------------------------
    # Fields and data
    # ------------------------------------------------------------------

    def field_start(self, is_default: bool, location: SourceLocation = NO_LOCATION) -> None:
        self._location = location
        top = self.top
        if top is None or top.in_field or top.root:
            self.logger.error(
                "Got field start, but there is no command for which to start the field.",
                location,
                ErrorKind.INVALID_COMMAND,
            )
            if top is not None:
                top.extra_fields += 1
            return

        if not top.valid:
            top.field_start(is_default, False, False)
            return
        if top.had_default_field:
            self.logger.error(
                f'Got field start, but command "{top.name}" already had a default field',
                location,
                ErrorKind.FIELD_AFTER_DEFAULT,
            )
            top.field_start(is_default, False, False)
            return

        idx = top.field_index
        ok, is_default = self._invoke(
            top, top.handler.field_start, is_default, idx, fail=(False, is_default)
        )
        if not ok:
            if not is_default:
                self.logger.error(
                    f"Cannot start a new field here (index {idx}), field does not exist",
                    location,
                    ErrorKind.INVALID_COMMAND,
                )
            top.field_start(is_default, False, False)
            return
        top.field_start(is_default, False, True)

    def field_end(self, location: SourceLocation = NO_LOCATION) -> None:
        self._location = location
        while self._frames:
            top = self._frames[-1]
            if top.extra_fields:
                top.extra_fields -= 1
                return
            if top.in_field and not top.in_implicit_default_field:
                break
            if top.has_range or top.root:
                break
            self._unroll_top()

        top = self.top
        if top is None or not top.in_field or top.in_implicit_default_field:
            self.logger.error(
                "Got field end, but there is no command for which to end the field.",
                location,
                ErrorKind.INVALID_COMMAND,
            )
            return
        self._close_open_tokens(top)
        if top.valid and top.in_valid_field:
            self._invoke(top, top.handler.field_end, fail=None)
        top.field_end()

    def data(self, content: str, location: SourceLocation = NO_LOCATION) -> None:
        self._location = location
        if not self._frames:
            self.logger.error("No command here to receive data.", location, ErrorKind.INVALID_COMMAND)
            return

        while True:
            self._end_overdue_handlers()
            top = self._frames[-1]
            if not self._ensure_handler_is_in_field():
                if top.has_range or top.root:
                    self.logger.error(
                        f'Command "{top.name}" does not accept data',
                        location,
                        ErrorKind.INVALID_COMMAND,
                    )
                    return
                self._unroll_top()
                continue

            if not (top.valid and top.in_valid_field):
                return

            fork = self.logger.fork()
            top.handler.set_logger(fork)
            try:
                ok = self._invoke(top, top.handler.data, content, fail=False)
            except OsmlError:
                fork.commit()
                top.handler.reset_logger()
                raise
            top.handler.reset_logger()
            if not ok and top.in_implicit_default_field and not (top.has_range or top.root):
                fork.purge()
                self._end_current()
                continue
            fork.commit()
            if not ok:
                top.valid = False
            return

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def token(self, token: Token) -> None:
        """Route a user-registered token: end it where it is open, else start it."""
        if any(token.id in f.open_tokens for f in self._frames):
            self.token_end(token)
        else:
            self.token_start(token)

    def token_start(self, token: Token) -> None:
        self._location = token.location
        # Tokens are content: they open the same implicit fields data does
        while self._frames:
            self._end_overdue_handlers()
            top = self._frames[-1]
            if self._ensure_handler_is_in_field() or top.has_range or top.root:
                break
            self._unroll_top()
        for frame in reversed(self._frames):
            if not (frame.valid and frame.state.supports_tokens):
                continue
            if self._invoke(frame, frame.handler.start_token, token.id, fail=False):
                frame.open_tokens.append(token.id)
                return
        self.data(token.content, token.location)

    def token_end(self, token: Token) -> None:
        self._location = token.location
        for i in range(len(self._frames) - 1, -1, -1):
            frame = self._frames[i]
            if token.id not in frame.open_tokens:
                continue
            result = self._invoke(
                frame, frame.handler.end_token, token.id, fail=EndTokenResult.ENDED_NONE
            )
            if result == EndTokenResult.ENDED_HIDDEN:
                frame.open_tokens.remove(token.id)
                return
            if result == EndTokenResult.ENDED_THIS:
                frame.open_tokens.remove(token.id)
                while len(self._frames) > i and not self._frames[-1].root:
                    self._end_current()
                return
        self.data(token.content, token.location)

    # ------------------------------------------------------------------
    # End of input
    # ------------------------------------------------------------------

    def close(self, location: SourceLocation = NO_LOCATION) -> None:
        """Pop every frame; explicitly opened constructs still open are errors."""
        self._location = location
        while self._frames:
            frame = self._frames[-1]
            if not (frame.root or frame.implicit):
                if frame.annotation:
                    self.logger.error(
                        f'Annotation "{frame.name}" was not closed',
                        frame.location,
                        ErrorKind.UNEXPECTED_END,
                    )
                    frame.in_valid_field = False
                elif frame.has_range:
                    self.logger.error(
                        f'Reached end of input, but command "{frame.name}" has not been ended',
                        location,
                        ErrorKind.UNEXPECTED_END,
                    )
                    frame.in_valid_field = False
                elif frame.in_field and not frame.in_implicit_default_field:
                    self.logger.error(
                        f'Reached end of input, but field of command "{frame.name}" is still open',
                        location,
                        ErrorKind.UNEXPECTED_END,
                    )
                    frame.in_valid_field = False
            self._end_current()
        if self.tokens is not None:
            self.tokens.close()
