"""A simple key-value store keeping every version of each key."""

from __future__ import annotations

__all__ = ["KVStore"]


class KVStore:
    """Maps each key to a stack of values; the newest value is on top."""

    def __init__(self) -> None:
        self._store: dict[str, list[str]] = {}

    def __contains__(self, key: object) -> bool:
        return bool(self._store.get(key))  # type: ignore[arg-type]

    def get(self, key: str) -> str:
        """Return the newest value of ``key``; raise KeyError if there is none."""
        versions = self._store.get(key)
        if not versions:
            raise KeyError(key)
        return versions[-1]

    def put(self, key: str, value: str) -> None:
        self._store.setdefault(key, []).append(value)

    def remove(self, key: str) -> str:
        """Delete and return the newest value of ``key``; raise KeyError if there is none."""
        versions = self._store.get(key)
        if not versions:
            raise KeyError(key)
        return versions.pop()