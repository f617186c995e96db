"""Tests for SourceLocation and the SourceRegistry."""

from __future__ import annotations

import pytest

from osml.location import NO_LOCATION, SourceLocation, SourceRegistry


class TestSourceLocation:
    def test_length_and_validity(self) -> None:
        loc = SourceLocation(0, 3, 7)
        assert loc.length == 4
        assert loc.valid
        assert not NO_LOCATION.valid

    def test_end_before_start(self) -> None:
        with pytest.raises(ValueError):
            SourceLocation(0, 5, 2)

    def test_join(self) -> None:
        joined = SourceLocation(0, 5, 8).join(SourceLocation(0, 1, 3))
        assert (joined.start, joined.end) == (1, 8)

    def test_zero_width_ends(self) -> None:
        loc = SourceLocation(2, 4, 9)
        assert loc.at_start() == SourceLocation(2, 4, 4)
        assert loc.at_end() == SourceLocation(2, 9, 9)


class TestSourceRegistry:
    def test_ids_are_sequential(self) -> None:
        reg = SourceRegistry()
        assert reg.register("a") == 0
        assert reg.register("b") == 1
        assert len(reg) == 2
        assert reg.find("b") == 1
        assert reg.find("c") is None

    def test_independent_registries(self) -> None:
        assert SourceRegistry().register("x") == SourceRegistry().register("y")

    def test_unknown_id(self) -> None:
        reg = SourceRegistry()
        assert reg.name(4) == "<unknown>"
        assert reg.data(4) == b""
        assert reg.position(4, 0) == (0, 0)

    def test_position(self) -> None:
        reg = SourceRegistry()
        sid = reg.register("t", b"ab\ncd efg\n")
        assert reg.position(sid, 0) == (1, 1)
        assert reg.position(sid, 6) == (2, 4)

    @pytest.mark.parametrize("data", [b"a\r\nb", b"a\n\rb", b"a\rb"])
    def test_position_after_linebreak(self, data: bytes) -> None:
        reg = SourceRegistry()
        sid = reg.register("t", data)
        assert reg.position(sid, len(data) - 1) == (2, 1)

    def test_position_counts_characters(self) -> None:
        reg = SourceRegistry()
        sid = reg.register("t", "héllo".encode())
        assert reg.position(sid, 3) == (1, 3)

    def test_line_text(self) -> None:
        reg = SourceRegistry()
        sid = reg.register("t", b"first\r\nsecond\nthird")
        assert reg.line_text(sid, 1) == "first"
        assert reg.line_text(sid, 2) == "second"
        assert reg.line_text(sid, 3) == "third"
        assert reg.line_text(sid, 4) == ""

    def test_set_data_resets_lines(self) -> None:
        reg = SourceRegistry()
        sid = reg.register("t", b"one line")
        assert reg.line_text(sid, 2) == ""
        reg.set_data(sid, b"one\ntwo")
        assert reg.line_text(sid, 2) == "two"
