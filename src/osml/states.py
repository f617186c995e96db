"""Parser states, the state graph, and scope-based state deduction."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from osml.arguments import ArgSchema

if TYPE_CHECKING:
    from osml.handlers import Handler, HandlerData

HandlerCtor = Callable[["HandlerData"], "Handler"]

WILDCARD = "*"


@dataclass(frozen=True, eq=False)
class State:
    """One legal parser state. Compared and hashed by identity."""

    name: str
    parents: tuple[State, ...] = ()
    arguments: ArgSchema = field(default_factory=ArgSchema)
    created_types: frozenset[str] = frozenset()
    handler: HandlerCtor | None = None
    supports_annotations: bool = False
    supports_tokens: bool = False
    # Fields of this state hold primitive data, never "magic" identifiers
    primitive: bool = False
    # Token strings the handler registers while the state is open
    tokens: tuple[str, ...] = ()

    def __repr__(self) -> str:
        return f"State({self.name!r})"

    def accepts_parent(self, state: State) -> bool:
        return state in self.parents or ALL in self.parents


# Initial state of an empty stack; has no parents.
NONE = State("none")
# Parent placeholder matching every state.
ALL = State("all")


class StateGraph:
    """Maps command names to the states they may open.

    Several states can share a name; the first one whose parents accept
    the current state wins. ``"*"`` entries catch every other name.
    """

    def __init__(self, states: Mapping[str, State | Sequence[State]] | None = None) -> None:
        self._by_name: dict[str, list[State]] = {}
        if states:
            for name, value in states.items():
                if isinstance(value, State):
                    self.add(name, value)
                else:
                    for state in value:
                        self.add(name, state)

    def add(self, name: str, state: State) -> None:
        self._by_name.setdefault(name, []).append(state)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    @property
    def states(self) -> list[State]:
        """Every distinct state in the graph, in insertion order."""
        seen: dict[State, None] = {}
        for states in self._by_name.values():
            for s in states:
                seen.setdefault(s, None)
        return list(seen)

    def find(self, name: str, current: State) -> State | None:
        """Return the state *name* opens when the stack is in *current*."""
        for key in (name, WILDCARD):
            for state in self._by_name.get(key, ()):
                if state.accepts_parent(current):
                    return state
        return None

    def expected(self, current: State) -> list[str]:
        """Names that may legally follow *current*, sorted, wildcard excluded."""
        return sorted(
            name
            for name, states in self._by_name.items()
            if name != WILDCARD and any(s.accepts_parent(current) for s in states)
        )

    def by_name(self, name: str) -> list[State]:
        return list(self._by_name.get(name, ()))


class StateDeductor:
    """Finds the states that may have produced a given scope signature.

    *signature* lists the node type of every scope node from the bottom
    up. A state is active at depth *d* if it created the node at *d* on
    top of an active parent, or if it nests inside a state active at *d*
    without creating a node of its own.
    """

    def __init__(self, signature: Sequence[str], states: Iterable[State]) -> None:
        self.signature = list(signature)
        self.states = [s for s in states if s is not NONE and s is not ALL]
        self._memo: dict[tuple[int, State], bool] = {}

    def _parents(self, state: State) -> Iterable[State]:
        if ALL in state.parents:
            return self.states
        return [p for p in state.parents if p is not NONE]

    def _is_active(self, d: int, state: State) -> bool:
        if d < 0:
            return False
        key = (d, state)
        if key in self._memo:
            return self._memo[key]
        # Guards against cycles through the parent relation
        self._memo[key] = False

        generative = self.signature[d] in state.created_types
        if generative and d == 0:
            res = True
        elif generative and self._is_active(d - 1, state):
            res = True
        else:
            res = any(
                (generative and self._is_active(d - 1, p)) or self._is_active(d, p)
                for p in self._parents(state)
            )
        self._memo[key] = res
        return res

    def deduce(self) -> list[State]:
        if not self.signature:
            return []
        last = len(self.signature) - 1
        return [
            s
            for s in self.states
            if self.signature[last] in s.created_types and self._is_active(last, s)
        ]


def default_graph() -> StateGraph:
    """State graph for plain OSML documents.

    ``document`` is the implicit root, ``include`` pulls in another
    source, and every other command is handled generically.
    """
    from osml.arguments import Argument
    from osml.handlers import DocumentHandler, EventHandler, IncludeHandler

    document = State(
        "document",
        parents=(NONE,),
        created_types=frozenset({"document"}),
        handler=DocumentHandler,
        supports_annotations=True,
        supports_tokens=True,
        primitive=True,
    )
    include = State(
        "include",
        parents=(ALL,),
        arguments=ArgSchema([Argument("src", "string")], allow_additional=False),
        handler=IncludeHandler,
    )
    command = State(
        "command",
        parents=(ALL,),
        created_types=frozenset({"command"}),
        handler=EventHandler,
        supports_annotations=True,
        supports_tokens=True,
    )
    return StateGraph({"document": document, "include": include, WILDCARD: command})
