"""Tests for ParserStack driven directly, without the stream parser."""

from __future__ import annotations

import pytest

from osml.errors import ErrorKind, OsmlError
from osml.events import AnnotationEnd, AnnotationStart, CommandStart, Data, FieldStart
from osml.handlers import (
    DocumentHandler,
    EndTokenResult,
    EventHandler,
    HandlerCallbacks,
    ParserContext,
    UserHandler,
)
from osml.location import SourceLocation
from osml.logger import CollectingLogger
from osml.scope import ScopeNode
from osml.stack import ParserStack
from osml.states import ALL, NONE, State, StateGraph, default_graph
from osml.tokens import Token
from tests.conftest import assert_kinds

LOC = SourceLocation(0, 0, 1)


def document_state(**kwargs) -> State:
    params = dict(
        parents=(NONE,),
        created_types=frozenset({"document"}),
        handler=DocumentHandler,
        supports_annotations=True,
        supports_tokens=True,
        primitive=True,
    )
    params.update(kwargs)
    return State("document", **params)


def strict_graph(**document_kwargs) -> StateGraph:
    document = document_state(**document_kwargs)
    section = State(
        "section",
        parents=(document,),
        created_types=frozenset({"section"}),
        handler=EventHandler,
    )
    return StateGraph({"document": document, "section": section})


def make_stack(graph: StateGraph | None = None) -> tuple[ParserStack, ParserContext]:
    ctx = ParserContext(graph or default_graph(), CollectingLogger())
    stack = ParserStack(ctx)
    stack.push_root()
    return stack, ctx


def emitted(ctx: ParserContext) -> list:
    return list(ctx.events)


def data_contents(ctx: ParserContext) -> list[str]:
    return [e.content for e in ctx.events if isinstance(e, Data)]


class TestCommands:
    def test_data_at_root(self) -> None:
        stack, ctx = make_stack()
        stack.data("hello", LOC)
        stack.close()
        assert emitted(ctx) == [Data("hello", LOC)]

    def test_implicit_default_field(self) -> None:
        stack, ctx = make_stack()
        stack.command_start("a", {})
        stack.data("x")
        stack.close()
        assert_kinds(emitted(ctx), ["CommandStart", "FieldStart", "Data", "FieldEnd"])
        assert emitted(ctx)[1].is_default
        assert ctx.logger.messages == []

    def test_explicit_fields(self) -> None:
        stack, ctx = make_stack()
        stack.command_start("a", {})
        stack.field_start(False)
        stack.data("x")
        stack.field_end()
        stack.field_start(True)
        stack.field_end()
        stack.close()
        kinds = ["CommandStart", "FieldStart", "Data", "FieldEnd", "FieldStart", "FieldEnd"]
        assert_kinds(emitted(ctx), kinds)
        assert [e.is_default for e in emitted(ctx) if isinstance(e, FieldStart)] == [False, True]

    def test_field_after_default(self) -> None:
        stack, ctx = make_stack()
        stack.command_start("a", {})
        stack.field_start(True)
        stack.field_end()
        stack.field_start(False)
        stack.data("lost")
        stack.field_end()
        stack.close()
        assert_kinds(emitted(ctx), ["CommandStart", "FieldStart", "FieldEnd"])
        assert ctx.logger.kinds() == [ErrorKind.FIELD_AFTER_DEFAULT]

    def test_unknown_command_in_strict_graph(self) -> None:
        stack, ctx = make_stack(strict_graph())
        stack.command_start("para", {})
        stack.data("x")
        stack.close()
        assert data_contents(ctx) == ["x"]
        (err,) = ctx.logger.errors()
        assert err.message == 'Expected "section", but got "para"'
        assert err.kind == ErrorKind.INVALID_COMMAND

    def test_no_nested_elements(self) -> None:
        stack, ctx = make_stack(strict_graph())
        stack.command_start("section", {})
        stack.field_start(False)
        stack.command_start("x", {})
        stack.field_end()
        stack.close()
        assert ctx.logger.errors()[0].message == 'No nested elements allowed, but got "x"'
        assert_kinds(emitted(ctx), ["CommandStart", "FieldStart", "FieldEnd"])

    def test_sibling_ends_implicit_field(self) -> None:
        stack, ctx = make_stack(strict_graph())
        stack.command_start("section", {})
        stack.data("x")
        stack.command_start("section", {})
        stack.data("y")
        stack.close()
        kinds = ["CommandStart", "FieldStart", "Data", "FieldEnd"] * 2
        assert_kinds(emitted(ctx), kinds)
        assert ctx.logger.messages == []

    def test_invalid_identifier(self) -> None:
        stack, ctx = make_stack()
        stack.command_start("9lives", {})
        stack.close()
        assert ctx.logger.kinds() == [ErrorKind.INVALID_IDENTIFIER]
        assert emitted(ctx) == []

    def test_argument_validation_failure(self) -> None:
        stack, ctx = make_stack()
        stack.command_start("include", {"src": 3})
        stack.data("after")
        stack.close()
        assert ctx.logger.kinds() == [ErrorKind.ARGUMENT_VALIDATION]
        assert data_contents(ctx) == ["after"]

    def test_scope_follows_frames(self) -> None:
        stack, ctx = make_stack()
        stack.command_start("a", {})
        stack.field_start(False)
        stack.command_start("b", {})
        assert ctx.scope.type_signature() == ["document", "command", "command"]
        stack.close()
        assert len(ctx.scope) == 0


class TestRanges:
    def test_range_end_closes_inner_commands(self) -> None:
        stack, ctx = make_stack()
        stack.command_start("a", {}, True)
        stack.command_start("b", {})
        stack.data("x")
        stack.range_end()
        stack.close()
        kinds = ["CommandStart", "FieldStart", "CommandStart", "FieldStart", "Data"]
        assert_kinds(emitted(ctx), kinds + ["FieldEnd", "FieldEnd"])
        assert ctx.logger.messages == []

    def test_empty_range_still_has_field(self) -> None:
        stack, ctx = make_stack()
        stack.command_start("a", {}, True)
        stack.range_end()
        assert_kinds(emitted(ctx), ["CommandStart", "FieldStart", "FieldEnd"])

    def test_range_end_without_range(self) -> None:
        stack, ctx = make_stack()
        stack.range_end()
        assert ctx.logger.errors()[0].message.startswith("Got range end")

    def test_unclosed_range(self) -> None:
        stack, ctx = make_stack()
        stack.command_start("a", {}, True)
        stack.data("x")
        stack.close()
        assert_kinds(emitted(ctx), ["CommandStart", "FieldStart", "Data"])
        assert ctx.logger.kinds() == [ErrorKind.UNEXPECTED_END]
        assert 'command "a" has not been ended' in ctx.logger.errors()[0].message


class TestFieldErrors:
    def test_stray_field_start_is_balanced(self) -> None:
        stack, ctx = make_stack()
        stack.field_start(False)
        stack.data("x")
        stack.field_end()
        stack.data("y")
        stack.close()
        assert len(ctx.logger.errors()) == 1
        assert data_contents(ctx) == ["x", "y"]

    def test_unmatched_field_end(self) -> None:
        stack, ctx = make_stack()
        stack.data("x")
        stack.field_end()
        assert ctx.logger.errors()[0].message.startswith("Got field end")

    def test_unclosed_field(self) -> None:
        stack, ctx = make_stack()
        stack.command_start("a", {})
        stack.field_start(False)
        stack.close()
        assert_kinds(emitted(ctx), ["CommandStart", "FieldStart"])
        assert "is still open" in ctx.logger.errors()[0].message

    def test_refused_field(self) -> None:
        callbacks = HandlerCallbacks(field_start=lambda h, is_default, idx: (idx == 0, is_default))
        graph = StateGraph(
            {
                "document": document_state(),
                "one": State("one", parents=(ALL,), handler=UserHandler.factory(callbacks)),
            }
        )
        stack, ctx = make_stack(graph)
        stack.command_start("one", {})
        stack.field_start(False)
        stack.field_end()
        stack.field_start(False)
        stack.field_end()
        stack.close()
        assert ctx.logger.errors()[0].message == (
            "Cannot start a new field here (index 1), field does not exist"
        )

    def test_no_frames(self) -> None:
        ctx = ParserContext(default_graph(), CollectingLogger())
        ParserStack(ctx).data("x")
        assert ctx.logger.errors()[0].message == "No command here to receive data."


class TestAnnotations:
    def test_annotation_spans_content(self) -> None:
        stack, ctx = make_stack()
        stack.annotation_start("em", {})
        stack.data("x")
        stack.annotation_end("em")
        stack.close()
        assert_kinds(emitted(ctx), ["AnnotationStart", "Data", "AnnotationEnd"])
        assert ctx.logger.messages == []

    def test_annotation_with_field(self) -> None:
        stack, ctx = make_stack()
        stack.annotation_start("link", {})
        stack.field_start(False)
        stack.data("url")
        stack.field_end()
        stack.data("text")
        stack.annotation_end("link")
        stack.close()
        kinds = ["AnnotationStart", "FieldStart", "Data", "FieldEnd", "Data", "AnnotationEnd"]
        assert_kinds(emitted(ctx), kinds)

    def test_close_by_element_name(self) -> None:
        stack, ctx = make_stack()
        stack.annotation_start("a", {"name": "x"})
        stack.annotation_start("a", {"name": "y"})
        stack.data("t")
        stack.annotation_end("a", "x")
        stack.close()
        events = emitted(ctx)
        assert_kinds(events, ["AnnotationStart", "AnnotationStart", "Data", "AnnotationEnd"])
        assert isinstance(events[-1], AnnotationEnd)
        assert events[-1].args == {"name": "x"}
        (err,) = ctx.logger.errors()
        assert err.message == 'Annotation "a" was not closed'
        assert err.kind == ErrorKind.UNEXPECTED_END

    def test_anonymous_end_closes_innermost(self) -> None:
        stack, ctx = make_stack()
        stack.annotation_start("a", {})
        stack.annotation_start("b", {})
        stack.annotation_end("")
        stack.annotation_end("")
        stack.close()
        ends = [e.name for e in emitted(ctx) if isinstance(e, AnnotationEnd)]
        assert ends == ["b", "a"]
        assert ctx.logger.messages == []

    def test_mismatch(self) -> None:
        stack, ctx = make_stack()
        stack.annotation_end("zz")
        assert ctx.logger.kinds() == [ErrorKind.ANNOTATION_MISMATCH]

    def test_unsupported(self) -> None:
        doc = document_state(supports_annotations=False)
        note = State("note", parents=(doc,), handler=EventHandler)
        graph = StateGraph({"document": doc, "note": note})
        stack, ctx = make_stack(graph)
        stack.annotation_start("note", {})
        assert "annotations are not supported" in ctx.logger.errors()[0].message
        assert not any(isinstance(e, AnnotationStart) for e in emitted(ctx))

    def test_unclosed_annotation(self) -> None:
        stack, ctx = make_stack()
        stack.annotation_start("a", {})
        stack.close()
        assert ctx.logger.errors()[0].message == 'Annotation "a" was not closed'


class TestTokens:
    def test_handler_ends_itself(self) -> None:
        ended: list[str] = []
        callbacks = HandlerCallbacks(
            start_token=lambda h, id: id == 42,
            end_token=lambda h, id: EndTokenResult.ENDED_THIS,
            end=lambda h: ended.append(h.name),
        )
        graph = StateGraph(
            {
                "document": document_state(),
                "emph": State(
                    "emph",
                    parents=(ALL,),
                    handler=UserHandler.factory(callbacks),
                    supports_tokens=True,
                ),
            }
        )
        stack, _ = make_stack(graph)
        stack.command_start("emph", {})
        star = Token(42, "*", LOC)
        stack.token(star)
        assert stack.top.open_tokens == [42]
        stack.token(star)
        assert ended == ["emph"]
        assert len(stack) == 1

    def test_unclaimed_token_becomes_data(self) -> None:
        stack, ctx = make_stack()
        stack.token(Token(42, "*", LOC))
        assert emitted(ctx) == [Data("*", LOC)]


class TestUserHandler:
    def test_rejected_data_moves_to_parent(self) -> None:
        callbacks = HandlerCallbacks(data=lambda h, content: False)
        graph = StateGraph(
            {
                "document": document_state(),
                "picky": State("picky", parents=(ALL,), handler=UserHandler.factory(callbacks)),
            }
        )
        stack, ctx = make_stack(graph)
        stack.command_start("picky", {})
        stack.data("x")
        assert len(stack) == 1
        assert data_contents(ctx) == ["x"]
        assert ctx.logger.messages == []

    def test_callbacks_see_handler(self) -> None:
        seen: list[tuple[str, object]] = []
        callbacks = HandlerCallbacks(
            start_command=lambda h, name, args: seen.append((name, args)) or True,
            data=lambda h, content: seen.append((h.name, content)) or True,
        )
        graph = StateGraph(
            {
                "document": document_state(),
                "*": State("cmd", parents=(ALL,), handler=UserHandler.factory(callbacks)),
            }
        )
        stack, _ = make_stack(graph)
        stack.command_start("box", {"k": 1})
        stack.data("v")
        assert seen == [("box", {"k": 1}), ("box", "v")]

    def test_failing_callback_invalidates_frame(self) -> None:
        def explode(h, content):
            raise OsmlError("bad content", kind=ErrorKind.INVALID_COMMAND)

        graph = StateGraph(
            {
                "document": document_state(),
                "x": State(
                    "x",
                    parents=(ALL,),
                    handler=UserHandler.factory(HandlerCallbacks(data=explode)),
                ),
            }
        )
        stack, ctx = make_stack(graph)
        stack.command_start("x", {})
        stack.field_start(False)
        stack.data("boom")
        stack.data("again")
        assert [m.message for m in ctx.logger.errors()] == ["bad content"]
        assert not stack.top.valid

    def test_fatal_error_propagates(self) -> None:
        def explode(h, content):
            raise OsmlError("disk gone", kind=ErrorKind.IO)

        graph = StateGraph(
            {
                "document": document_state(),
                "x": State(
                    "x",
                    parents=(ALL,),
                    handler=UserHandler.factory(HandlerCallbacks(data=explode)),
                ),
            }
        )
        stack, _ = make_stack(graph)
        stack.command_start("x", {})
        with pytest.raises(OsmlError, match="disk gone"):
            stack.data("boom")


class TestDeduction:
    def test_resume_inside_command(self) -> None:
        ctx = ParserContext(default_graph(), CollectingLogger())
        ctx.scope.push(ScopeNode("document"))
        ctx.scope.push(ScopeNode("command", "a"))
        stack = ParserStack(ctx)
        (frame,) = stack.frames
        assert frame.state.name == "command"
        assert frame.implicit and frame.root
        stack.data("x", LOC)
        stack.close()
        assert emitted(ctx) == [Data("x", LOC, magic=True)]
        assert ctx.logger.messages == []

    def test_ambiguous_scope(self) -> None:
        ctx = ParserContext(default_graph(), CollectingLogger())
        ctx.scope.push(ScopeNode("table"))
        with pytest.raises(OsmlError, match="Cannot deduce parser state") as info:
            ParserStack(ctx)
        assert info.value.kind == ErrorKind.INCLUDE_AMBIGUOUS


def test_command_start_event_carries_args() -> None:
    stack, ctx = make_stack()
    stack.command_start("a", {"k": "v"}, location=LOC)
    assert emitted(ctx) == [CommandStart("a", {"k": "v"}, LOC)]
