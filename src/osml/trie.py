"""Prefix trie mapping punctuation strings to token ids."""

from __future__ import annotations

from dataclasses import dataclass, field

from osml.tokens import EMPTY, TokenId


@dataclass(slots=True)
class TrieNode:
    children: dict[int, TrieNode] = field(default_factory=dict)
    id: TokenId = EMPTY


class TokenTrie:
    """Set of active token strings, keyed byte by byte (UTF-8).

    A node carries a non-EMPTY id iff a registered string ends there;
    the root never does.
    """

    def __init__(self) -> None:
        self.root = TrieNode()

    def register(self, token: str, id: TokenId) -> bool:
        """Insert *token* with *id*; False for "" or if *token* is already registered."""
        data = token.encode("utf-8")
        if not data or id == EMPTY:
            return False
        node = self.root
        for b in data:
            child = node.children.get(b)
            if child is None:
                child = TrieNode()
                node.children[b] = child
            node = child
        if node.id != EMPTY:
            return False
        node.id = id
        return True

    def unregister(self, token: str) -> bool:
        """Remove *token*, pruning the branch that only served it."""
        data = token.encode("utf-8")
        if not data:
            return False

        # Deepest node whose subtree must survive, and the edge below it to cut
        subtree_root = self.root
        subtree_key = data[0]

        node = self.root
        for b in data:
            child = node.children.get(b)
            if child is None:
                return False
            if node.id != EMPTY or len(node.children) > 1:
                subtree_root = node
                subtree_key = b
            node = child

        if node.id == EMPTY:
            return False

        if node.children:
            node.id = EMPTY
        else:
            del subtree_root.children[subtree_key]
        return True

    def has(self, token: str) -> TokenId:
        """Return the id registered for exactly *token*, or EMPTY."""
        node = self.root
        for b in token.encode("utf-8"):
            node = node.children.get(b)
            if node is None:
                return EMPTY
        return node.id
