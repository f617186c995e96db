"""Source offsets, locations, and the per-pipeline source registry."""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field

SourceOffset = int
SourceId = int

# Offsets are 32-bit unsigned in the on-disk formats; the max value marks "no offset".
INVALID_OFFSET: SourceOffset = 0xFFFFFFFF
INVALID_SOURCE: SourceId = 0xFFFFFFFF


@dataclass(frozen=True, slots=True)
class SourceLocation:
    """Half-open byte range [start, end) inside one registered source."""

    source_id: SourceId
    start: SourceOffset
    end: SourceOffset

    def __post_init__(self) -> None:
        if self.start != INVALID_OFFSET and self.end < self.start:
            raise ValueError(f"location end {self.end} before start {self.start}")

    @property
    def valid(self) -> bool:
        return self.start != INVALID_OFFSET and self.source_id != INVALID_SOURCE

    @property
    def length(self) -> int:
        return self.end - self.start

    def at_start(self) -> SourceLocation:
        """Zero-width location at the start of this range."""
        return SourceLocation(self.source_id, self.start, self.start)

    def at_end(self) -> SourceLocation:
        """Zero-width location at the end of this range."""
        return SourceLocation(self.source_id, self.end, self.end)

    def join(self, other: SourceLocation) -> SourceLocation:
        """Smallest location covering both ranges (same source only)."""
        return SourceLocation(
            self.source_id, min(self.start, other.start), max(self.end, other.end)
        )


NO_LOCATION = SourceLocation(INVALID_SOURCE, INVALID_OFFSET, INVALID_OFFSET)


@dataclass(slots=True)
class _Source:
    name: str
    data: bytes
    line_starts: list[int] = field(default_factory=list)


class SourceRegistry:
    """Allocates source ids and remembers source bytes for diagnostics.

    Ids come from a counter owned by the registry, so every pipeline can
    carry its own registry without global state.
    """

    def __init__(self) -> None:
        self._sources: list[_Source] = []

    def register(self, name: str, data: bytes = b"") -> SourceId:
        self._sources.append(_Source(name, data))
        return len(self._sources) - 1

    def set_data(self, source_id: SourceId, data: bytes) -> None:
        src = self._sources[source_id]
        src.data = data
        src.line_starts = []

    def __contains__(self, source_id: object) -> bool:
        return isinstance(source_id, int) and 0 <= source_id < len(self._sources)

    def __len__(self) -> int:
        return len(self._sources)

    def name(self, source_id: SourceId) -> str:
        if source_id not in self:
            return "<unknown>"
        return self._sources[source_id].name

    def data(self, source_id: SourceId) -> bytes:
        if source_id not in self:
            return b""
        return self._sources[source_id].data

    def find(self, name: str) -> SourceId | None:
        for idx, src in enumerate(self._sources):
            if src.name == name:
                return idx
        return None

    # ------------------------------------------------------------------
    # Offset -> line / column
    # ------------------------------------------------------------------

    def _line_starts(self, src: _Source) -> list[int]:
        if not src.line_starts:
            starts = [0]
            data = src.data
            i = 0
            n = len(data)
            while i < n:
                b = data[i]
                if b == 0x0A or b == 0x0D:
                    # \r\n and \n\r count as a single break
                    if i + 1 < n and data[i + 1] in (0x0A, 0x0D) and data[i + 1] != b:
                        i += 1
                    starts.append(i + 1)
                i += 1
            src.line_starts = starts
        return src.line_starts

    def position(self, source_id: SourceId, offset: SourceOffset) -> tuple[int, int]:
        """Return the 1-based (line, column) of *offset*.

        Columns skip UTF-8 continuation bytes, matching ``SourceReader``.
        """
        if source_id not in self or offset == INVALID_OFFSET:
            return (0, 0)
        src = self._sources[source_id]
        starts = self._line_starts(src)
        line_idx = bisect.bisect_right(starts, offset) - 1
        line_start = starts[line_idx]
        column = 1
        for b in src.data[line_start:offset]:
            if (b & 0xC0) != 0x80:
                column += 1
        return (line_idx + 1, column)

    def line_text(self, source_id: SourceId, line: int) -> str:
        """Return the text of the 1-based *line* without its linebreak."""
        if source_id not in self or line < 1:
            return ""
        src = self._sources[source_id]
        starts = self._line_starts(src)
        if line > len(starts):
            return ""
        start = starts[line - 1]
        end = starts[line] if line < len(starts) else len(src.data)
        raw = src.data[start:end].rstrip(b"\r\n")
        return raw.decode("utf-8", errors="replace")
