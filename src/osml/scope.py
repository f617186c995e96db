"""Companion stack of domain nodes pushed by handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from osml.location import SourceLocation


@dataclass(slots=True)
class ScopeNode:
    type: str
    name: str = ""
    location: SourceLocation | None = None
    data: dict[str, Any] = field(default_factory=dict)


class Scope:
    """Nodes opened by handlers, innermost last.

    The node types form the signature used to deduce the parser state
    when parsing resumes inside an existing scope (includes).
    """

    def __init__(self) -> None:
        self._nodes: list[ScopeNode] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __bool__(self) -> bool:
        return bool(self._nodes)

    def __iter__(self):
        return iter(self._nodes)

    def push(self, node: ScopeNode) -> None:
        self._nodes.append(node)

    def pop(self) -> ScopeNode:
        return self._nodes.pop()

    def leaf(self) -> ScopeNode | None:
        return self._nodes[-1] if self._nodes else None

    def select(self, type: str) -> ScopeNode | None:
        """Innermost node of the given type."""
        for node in reversed(self._nodes):
            if node.type == type:
                return node
        return None

    def type_signature(self) -> list[str]:
        return [n.type for n in self._nodes]

    def pop_node(self, node: ScopeNode) -> None:
        """Remove *node* and everything pushed above it."""
        for i in range(len(self._nodes) - 1, -1, -1):
            if self._nodes[i] is node:
                del self._nodes[i:]
                return
