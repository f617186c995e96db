"""Parse events emitted by the handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from osml.location import SourceLocation
from osml.tokens import TokenId


@dataclass(frozen=True, slots=True)
class CommandStart:
    name: str
    args: dict[str | int, Any]
    location: SourceLocation


@dataclass(frozen=True, slots=True)
class AnnotationStart:
    name: str
    args: dict[str | int, Any]
    location: SourceLocation


@dataclass(frozen=True, slots=True)
class AnnotationEnd:
    name: str
    args: dict[str | int, Any]
    location: SourceLocation


@dataclass(frozen=True, slots=True)
class FieldStart:
    is_default: bool
    location: SourceLocation


@dataclass(frozen=True, slots=True)
class FieldEnd:
    location: SourceLocation


@dataclass(frozen=True, slots=True)
class Data:
    """A run of content. *magic* marks identifier-shaped data in non-primitive fields."""

    content: str
    location: SourceLocation
    magic: bool = False


@dataclass(frozen=True, slots=True)
class End:
    location: SourceLocation


@dataclass(frozen=True, slots=True)
class TokenStart:
    id: TokenId
    location: SourceLocation


@dataclass(frozen=True, slots=True)
class TokenEnd:
    id: TokenId
    location: SourceLocation


ParseEvent = Union[
    CommandStart,
    AnnotationStart,
    AnnotationEnd,
    FieldStart,
    FieldEnd,
    Data,
    End,
    TokenStart,
    TokenEnd,
]
