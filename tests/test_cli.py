"""Tests for the CLI module: arg parsing, exit codes, output formats."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from osml.cli import CliOptions, build_parser, main, run_file
from osml.handlers import DEFAULT_MAX_INCLUDE_DEPTH
from osml.whitespace import WhitespaceMode

# ---------------------------------------------------------------------------
# Arg parsing via build_parser
# ---------------------------------------------------------------------------


class TestArgParsing:
    def test_input_only(self) -> None:
        ns = build_parser().parse_args(["doc.osml"])
        assert ns.input == "doc.osml"
        assert ns.whitespace is None
        assert ns.include_path == []
        assert not ns.json

    def test_all_flags(self) -> None:
        ns = build_parser().parse_args(
            [
                "doc.osml",
                "--whitespace",
                "trim",
                "-I",
                "a",
                "--include-path",
                "b",
                "--max-include-depth",
                "3",
                "--json",
                "--debug",
            ]
        )
        assert ns.whitespace == "trim"
        assert ns.include_path == ["a", "b"]
        assert ns.max_include_depth == 3
        assert ns.json and ns.debug

    def test_bad_whitespace_choice(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["doc.osml", "--whitespace", "squash"])


# ---------------------------------------------------------------------------
# run_file
# ---------------------------------------------------------------------------


def options(path: Path, **kwargs) -> CliOptions:
    params = dict(
        input_file=path,
        whitespace=WhitespaceMode.COLLAPSE,
        include_paths=[],
        max_include_depth=DEFAULT_MAX_INCLUDE_DEPTH,
        json=False,
        debug=False,
    )
    params.update(kwargs)
    return CliOptions(**params)


class TestRunFile:
    def test_dump(self, tmp_path: Path) -> None:
        doc = tmp_path / "doc.osml"
        doc.write_text("hello")
        out, err = io.StringIO(), io.StringIO()
        assert run_file(options(doc), out, err) == 0
        assert out.getvalue().splitlines() == ["Data('hello') [0,5)", "End [5,5)"]
        assert err.getvalue() == ""

    def test_json_lines(self, tmp_path: Path) -> None:
        doc = tmp_path / "doc.osml"
        doc.write_text(r"\a{b}")
        out = io.StringIO()
        assert run_file(options(doc, json=True), out, io.StringIO()) == 0
        lines = [json.loads(line) for line in out.getvalue().splitlines()]
        assert [d["event"] for d in lines] == [
            "CommandStart",
            "FieldStart",
            "Data",
            "FieldEnd",
            "End",
        ]
        assert lines[0]["name"] == "a"

    def test_whitespace_option(self, tmp_path: Path) -> None:
        doc = tmp_path / "doc.osml"
        doc.write_text("a  b")
        out = io.StringIO()
        run_file(options(doc, whitespace=WhitespaceMode.PRESERVE), out, io.StringIO())
        assert "Data('a  b')" in out.getvalue()

    def test_errors_exit_1(self, tmp_path: Path) -> None:
        doc = tmp_path / "doc.osml"
        doc.write_text(r"\a{b")
        out, err = io.StringIO(), io.StringIO()
        assert run_file(options(doc), out, err) == 1
        assert "error: Reached end of input" in err.getvalue()
        assert f"--> {doc}:1:5" in err.getvalue()
        assert "End" in out.getvalue()

    def test_include_path(self, tmp_path: Path) -> None:
        inc = tmp_path / "inc"
        inc.mkdir()
        (inc / "part.osml").write_text("inner")
        doc = tmp_path / "doc.osml"
        doc.write_text(r'\include[src="part.osml"]')
        out = io.StringIO()
        assert run_file(options(doc, include_paths=[inc]), out, io.StringIO()) == 0
        assert "Data('inner')" in out.getvalue()

    def test_missing_include_is_fatal(self, tmp_path: Path) -> None:
        doc = tmp_path / "doc.osml"
        doc.write_text(r'\include[src="missing.osml"]')
        out, err = io.StringIO(), io.StringIO()
        assert run_file(options(doc), out, err) == 2
        assert 'fatal error: Cannot find source "missing.osml"' in err.getvalue()
        assert out.getvalue() == ""

    def test_missing_input(self, tmp_path: Path) -> None:
        err = io.StringIO()
        assert run_file(options(tmp_path / "nope.osml"), io.StringIO(), err) == 2
        assert "cannot read" in err.getvalue()


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------


class TestMain:
    def test_success(self, tmp_path: Path, capsys) -> None:
        doc = tmp_path / "doc.osml"
        doc.write_text(r"\title{Hello}")
        assert main([str(doc)]) == 0
        out = capsys.readouterr().out
        assert "CommandStart title" in out
        assert "  Data('Hello') magic" in out

    def test_error_exit_code(self, tmp_path: Path, capsys) -> None:
        doc = tmp_path / "doc.osml"
        doc.write_text("a } b")
        assert main([str(doc)]) == 1
        assert "error:" in capsys.readouterr().err

    def test_bad_config(self, tmp_path: Path, capsys) -> None:
        (tmp_path / "osml.toml").write_text('[parser]\nwhitespace = "squash"\n')
        doc = tmp_path / "doc.osml"
        doc.write_text("x")
        assert main([str(doc)]) == 2
        assert "unknown whitespace mode" in capsys.readouterr().err

    def test_broken_toml(self, tmp_path: Path, capsys) -> None:
        (tmp_path / "osml.toml").write_text("[parser\n")
        doc = tmp_path / "doc.osml"
        doc.write_text("x")
        assert main([str(doc)]) == 2

    def test_negative_depth(self, tmp_path: Path, capsys) -> None:
        doc = tmp_path / "doc.osml"
        doc.write_text("x")
        assert main([str(doc), "--max-include-depth", "-1"]) == 2
        assert "invalid include depth" in capsys.readouterr().err
