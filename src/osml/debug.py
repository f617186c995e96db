"""--debug event dump to stderr."""

from __future__ import annotations

import json
import sys
from collections.abc import Iterable
from dataclasses import fields
from typing import Any, TextIO

from osml.events import (
    AnnotationEnd,
    AnnotationStart,
    CommandStart,
    Data,
    End,
    FieldEnd,
    FieldStart,
    ParseEvent,
    TokenEnd,
    TokenStart,
)


def dump_events(events: Iterable[ParseEvent], *, file: TextIO = sys.stderr) -> None:
    """Print events to *file*, indented by field nesting."""
    depth = 0
    for ev in events:
        if isinstance(ev, (FieldEnd, AnnotationEnd, TokenEnd)):
            depth = max(0, depth - 1)
        file.write(f"{_indent(depth)}{format_event(ev)}\n")
        if isinstance(ev, (FieldStart, AnnotationStart, TokenStart)):
            depth += 1


def _indent(depth: int) -> str:
    return "  " * depth


def _span(ev: ParseEvent) -> str:
    loc = ev.location
    return f"[{loc.start},{loc.end})"


def _args(args: dict[Any, Any]) -> str:
    if not args:
        return ""
    return " " + ", ".join(f"{k}={v!r}" for k, v in args.items())


def format_event(ev: ParseEvent) -> str:
    """One-line rendering of *ev*."""
    if isinstance(ev, CommandStart):
        return f"CommandStart {ev.name}{_args(ev.args)} {_span(ev)}"
    if isinstance(ev, AnnotationStart):
        return f"AnnotationStart {ev.name}{_args(ev.args)} {_span(ev)}"
    if isinstance(ev, AnnotationEnd):
        return f"AnnotationEnd {ev.name} {_span(ev)}"
    if isinstance(ev, FieldStart):
        kind = "default" if ev.is_default else "explicit"
        return f"FieldStart {kind} {_span(ev)}"
    if isinstance(ev, FieldEnd):
        return f"FieldEnd {_span(ev)}"
    if isinstance(ev, Data):
        magic = " magic" if ev.magic else ""
        return f"Data({ev.content!r}){magic} {_span(ev)}"
    if isinstance(ev, TokenStart):
        return f"TokenStart {ev.id} {_span(ev)}"
    if isinstance(ev, TokenEnd):
        return f"TokenEnd {ev.id} {_span(ev)}"
    if isinstance(ev, End):
        return f"End {_span(ev)}"
    raise TypeError(f"not a parse event: {ev!r}")


def event_to_dict(ev: ParseEvent) -> dict[str, Any]:
    """JSON-friendly form of *ev*, used by ``osml --json``."""
    d: dict[str, Any] = {"event": type(ev).__name__}
    for f in fields(ev):
        name = f.name
        value = getattr(ev, name)
        if name == "location":
            d["start"] = value.start
            d["end"] = value.end
        elif name == "args":
            d["args"] = {str(k): v for k, v in value.items()}
        else:
            d[name] = value
    return d


def event_to_json(ev: ParseEvent) -> str:
    return json.dumps(event_to_dict(ev), ensure_ascii=False)
