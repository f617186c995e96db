"""Whitespace modes and the text accumulators that implement them."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum, auto

from osml.location import INVALID_OFFSET, SourceOffset
from osml.tokens import is_whitespace


class WhitespaceMode(Enum):
    PRESERVE = auto()  # keep every byte
    TRIM = auto()  # drop leading and trailing whitespace
    COLLAPSE = auto()  # TRIM, and internal runs become one space

    @classmethod
    def from_name(cls, name: str) -> WhitespaceMode:
        try:
            return cls[name.strip().upper()]
        except KeyError:
            valid = ", ".join(m.name.lower() for m in cls)
            raise ValueError(f"unknown whitespace mode {name!r} (expected one of {valid})") from None


class TextBuffer(ABC):
    """Accumulates bytes of a text run together with their source range.

    ``start``/``end`` cover the bytes that made it into ``data``, so
    trimmed whitespace does not widen the location.
    """

    def __init__(self) -> None:
        self.data = bytearray()
        self.start: SourceOffset = INVALID_OFFSET
        self.end: SourceOffset = INVALID_OFFSET
        self.line = 0
        self.end_line = 0

    def __bool__(self) -> bool:
        return bool(self.data)

    def clear(self) -> None:
        self.data.clear()
        self.start = INVALID_OFFSET
        self.end = INVALID_OFFSET
        self.line = 0
        self.end_line = 0

    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

    def _add(self, b: int, start: SourceOffset, end: SourceOffset, line: int) -> None:
        if not self.data:
            self.start = start
            self.line = line
        self.data.append(b)
        self.end = end
        self.end_line = line

    @abstractmethod
    def append(
        self,
        b: int,
        start: SourceOffset,
        end: SourceOffset,
        line: int = 1,
        protected: bool = False,
    ) -> None: ...


class PreservingBuffer(TextBuffer):
    def append(
        self,
        b: int,
        start: SourceOffset,
        end: SourceOffset,
        line: int = 1,
        protected: bool = False,
    ) -> None:
        self._add(b, start, end, line)


class TrimmingBuffer(TextBuffer):
    def __init__(self) -> None:
        super().__init__()
        self._pending: list[tuple[int, SourceOffset, SourceOffset, int]] = []

    def clear(self) -> None:
        super().clear()
        self._pending.clear()

    def append(
        self,
        b: int,
        start: SourceOffset,
        end: SourceOffset,
        line: int = 1,
        protected: bool = False,
    ) -> None:
        if not protected and is_whitespace(b):
            if self.data:
                self._pending.append((b, start, end, line))
            return
        for pending in self._pending:
            self._add(*pending)
        self._pending.clear()
        self._add(b, start, end, line)


class CollapsingBuffer(TextBuffer):
    def __init__(self) -> None:
        super().__init__()
        self._pending_space = False

    def clear(self) -> None:
        super().clear()
        self._pending_space = False

    def append(
        self,
        b: int,
        start: SourceOffset,
        end: SourceOffset,
        line: int = 1,
        protected: bool = False,
    ) -> None:
        if not protected and is_whitespace(b):
            if self.data:
                self._pending_space = True
            return
        if self._pending_space:
            self.data.append(0x20)
            self._pending_space = False
        self._add(b, start, end, line)


_BUFFERS: dict[WhitespaceMode, type[TextBuffer]] = {
    WhitespaceMode.PRESERVE: PreservingBuffer,
    WhitespaceMode.TRIM: TrimmingBuffer,
    WhitespaceMode.COLLAPSE: CollapsingBuffer,
}


def make_buffer(mode: WhitespaceMode) -> TextBuffer:
    return _BUFFERS[mode]()
