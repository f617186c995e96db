"""Reference-counted token registration shared by all handlers of a stack."""

from __future__ import annotations

from typing import Protocol

from osml.tokens import EMPTY, TokenId


class TokenSource(Protocol):
    """Anything tokens can be registered with (a tokenizer or stream parser)."""

    def register_token(self, token: str) -> TokenId: ...

    def unregister_token(self, id: TokenId) -> bool: ...


class TokenRegistry:
    """Shares one token id between every handler registering the same string.

    The underlying tokenizer only sees the first registration and the
    last unregistration of a string. Closing the registry (or leaving
    its ``with`` block) removes everything still registered.
    """

    def __init__(self, source: TokenSource) -> None:
        self.source = source
        self._by_string: dict[str, tuple[TokenId, int]] = {}
        self._by_id: dict[TokenId, str] = {}

    def __enter__(self) -> TokenRegistry:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, token: object) -> bool:
        return token in self._by_string

    def lookup(self, id: TokenId) -> str | None:
        return self._by_id.get(id)

    def refcount(self, token: str) -> int:
        entry = self._by_string.get(token)
        return entry[1] if entry is not None else 0

    def register_token(self, token: str) -> TokenId:
        entry = self._by_string.get(token)
        if entry is not None:
            id, count = entry
            self._by_string[token] = (id, count + 1)
            return id
        id = self.source.register_token(token)
        if id != EMPTY:
            self._by_string[token] = (id, 1)
            self._by_id[id] = token
        return id

    def unregister_token(self, id: TokenId) -> bool:
        token = self._by_id.get(id)
        if token is None:
            return False
        _, count = self._by_string[token]
        if count > 1:
            self._by_string[token] = (id, count - 1)
            return True
        del self._by_string[token]
        del self._by_id[id]
        self.source.unregister_token(id)
        return True

    def close(self) -> None:
        for id in list(self._by_id):
            self.source.unregister_token(id)
        self._by_string.clear()
        self._by_id.clear()
