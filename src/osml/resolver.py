"""Locating and loading sources referenced from a document."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Protocol

from osml.errors import ErrorKind, OsmlError
from osml.location import SourceId, SourceRegistry


class SourceResolver(Protocol):
    def resolve(self, path: str, relative_to: SourceId | None) -> tuple[SourceId, bytes]:
        """Return the id and bytes of *path*, raising ``OsmlError`` (IO) on failure."""
        ...


class FileSourceResolver:
    """Resolves paths against the including file, then the search paths."""

    def __init__(self, registry: SourceRegistry, search_paths: Iterable[Path] = ()) -> None:
        self.registry = registry
        self.search_paths = [Path(p) for p in search_paths]

    def candidates(self, path: str, relative_to: SourceId | None) -> list[Path]:
        p = Path(path)
        if p.is_absolute():
            return [p]
        result: list[Path] = []
        if relative_to is not None and relative_to in self.registry:
            result.append(Path(self.registry.name(relative_to)).parent / p)
        result.extend(d / p for d in self.search_paths)
        result.append(p)
        return result

    def resolve(self, path: str, relative_to: SourceId | None) -> tuple[SourceId, bytes]:
        for candidate in self.candidates(path, relative_to):
            if not candidate.is_file():
                continue
            try:
                data = candidate.read_bytes()
            except OSError as exc:
                raise OsmlError(f"Cannot read {candidate}: {exc}", kind=ErrorKind.IO) from exc
            name = str(candidate)
            source_id = self.registry.find(name)
            if source_id is None:
                source_id = self.registry.register(name, data)
            else:
                self.registry.set_data(source_id, data)
            return source_id, data
        raise OsmlError(f'Cannot find source "{path}"', kind=ErrorKind.IO)


class MemorySourceResolver:
    """Serves sources from a name -> bytes mapping."""

    def __init__(self, registry: SourceRegistry, files: Mapping[str, bytes]) -> None:
        self.registry = registry
        self.files = dict(files)

    def resolve(self, path: str, relative_to: SourceId | None) -> tuple[SourceId, bytes]:
        if path not in self.files:
            raise OsmlError(f'Cannot find source "{path}"', kind=ErrorKind.IO)
        data = self.files[path]
        source_id = self.registry.find(path)
        if source_id is None:
            source_id = self.registry.register(path, data)
        return source_id, data
