"""Tests for CodeTokenFilter: strings, comments, escapes, word splitting."""

from __future__ import annotations

import pytest

from osml.code import CodeTokenFilter, TokenMode
from osml.errors import ErrorKind, MultilineTokenError, OsmlError
from osml.reader import SourceReader
from osml.tokenizer import Tokenizer
from osml.tokens import TEXT, Token

MODES = {
    '"': TokenMode.STRING_START_END,
    "\\": TokenMode.ESCAPE,
    "//": TokenMode.LINE_COMMENT,
    "/*": TokenMode.BLOCK_COMMENT_START,
    "*/": TokenMode.BLOCK_COMMENT_END,
    "\n": TokenMode.LINEBREAK,
    "=": TokenMode.NONE,
}


def make_filter(source: str, modes=MODES, ignore_comments: bool = False) -> CodeTokenFilter:
    tokenizer = Tokenizer(SourceReader(source.encode("utf-8")))
    return CodeTokenFilter.from_strings(tokenizer, modes, ignore_comments=ignore_comments)


def drain(f: CodeTokenFilter) -> list[Token]:
    out: list[Token] = []
    while (t := f.read()) is not None:
        out.append(t)
    return out


def id_of(f: CodeTokenFilter, s: str) -> int:
    return f.tokenizer.trie.has(s)


class TestWords:
    def test_text_split_on_blanks(self) -> None:
        toks = drain(make_filter("alpha  beta\tgamma"))
        assert [t.content for t in toks] == ["alpha", "beta", "gamma"]
        assert all(t.id == TEXT for t in toks)

    def test_word_locations(self) -> None:
        toks = drain(make_filter("ab  cd"))
        assert [(t.location.start, t.location.end) for t in toks] == [(0, 2), (4, 6)]

    def test_plain_tokens_pass_through(self) -> None:
        f = make_filter("a = b")
        toks = drain(f)
        assert [t.content for t in toks] == ["a", "=", "b"]
        assert toks[1].id == id_of(f, "=")

    def test_escape_outside_string_passes_through(self) -> None:
        f = make_filter(r"C:\dir")
        toks = drain(f)
        assert [t.content for t in toks] == ["C:", "\\", "dir"]
        assert toks[1].id == id_of(f, "\\")

    def test_linebreak_reported(self) -> None:
        f = make_filter("a\nb")
        toks = drain(f)
        assert [t.id for t in toks] == [TEXT, id_of(f, "\n"), TEXT]


class TestStrings:
    def test_string_is_one_token(self) -> None:
        f = make_filter('a = "b c"')
        toks = drain(f)
        assert toks[-1].content == "b c"
        assert toks[-1].id == id_of(f, '"')
        assert (toks[-1].location.start, toks[-1].location.end) == (4, 9)

    def test_escaped_quote(self) -> None:
        (t,) = drain(make_filter(r'"a\"b"'))
        assert t.content == 'a"b'

    def test_escaped_backslash(self) -> None:
        (t,) = drain(make_filter(r'"a\\b"'))
        assert t.content == "a\\b"

    def test_comment_markers_inside_string(self) -> None:
        (t,) = drain(make_filter('"// not /* a comment"'))
        assert t.content == "// not /* a comment"

    def test_unterminated_string(self) -> None:
        f = make_filter('"abc')
        with pytest.raises(OsmlError, match="inside a string") as info:
            drain(f)
        assert info.value.kind == ErrorKind.UNEXPECTED_END


class TestComments:
    def test_line_comment(self) -> None:
        f = make_filter("x // hi\ny")
        toks = drain(f)
        assert [t.content for t in toks] == ["x", " hi", "y"]
        assert toks[1].id == id_of(f, "//")

    def test_line_comment_at_end_of_input(self) -> None:
        toks = drain(make_filter("x // y"))
        assert [t.content for t in toks] == ["x", " y"]

    def test_block_comment(self) -> None:
        f = make_filter("a /* b\n c */ d")
        toks = drain(f)
        assert [t.content for t in toks] == ["a", " b\n c ", "d"]
        assert toks[1].id == id_of(f, "/*")

    def test_ignored_comments(self) -> None:
        f = make_filter("x // hi\ny /* z */ w", ignore_comments=True)
        assert [t.content for t in drain(f)] == ["x", "y", "w"]

    def test_unterminated_block_comment(self) -> None:
        with pytest.raises(OsmlError) as info:
            drain(make_filter("a /* b"))
        assert info.value.kind == ErrorKind.UNEXPECTED_END


class TestMultiline:
    def test_token_spanning_lines_rejected(self) -> None:
        f = make_filter("x\n*y", {"\n*": TokenMode.NONE})
        assert f.read().content == "x"
        with pytest.raises(MultilineTokenError) as info:
            f.read()
        assert info.value.kind == ErrorKind.ENCODING


class TestPeek:
    def test_peek_and_commit(self) -> None:
        f = make_filter('a "b" c')
        assert f.peek().content == "a"
        assert f.peek().content == "b"
        f.reset_peek()
        assert f.peek().content == "a"
        f.commit_peek()
        assert f.read().content == "b"


class TestConstruction:
    def test_unregistrable_token(self) -> None:
        tokenizer = Tokenizer(SourceReader(b""))
        with pytest.raises(ValueError):
            CodeTokenFilter.from_strings(tokenizer, {"": TokenMode.NONE})
