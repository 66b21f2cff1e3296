"""Collect per-replica messages and detect when a quorum has been reached."""

from __future__ import annotations

from typing import Any, Generic, Hashable, TypeVar

__all__ = ["QuorumSet"]

K = TypeVar("K", bound=Hashable)
M = TypeVar("M")

_ANY: Any = object()


class QuorumSet(Generic[K, M]):
    """Messages grouped by key, each group holding one message per replica."""

    def __init__(self, num_required: int):
        self.num_required = num_required
        self._messages: dict[K, dict[int, M]] = {}

    def clear(self, key: K = _ANY) -> None:
        """Forget every message, or only those filed under ``key``."""
        if key is _ANY:
            self._messages.clear()
        else:
            self._messages[key] = {}

    def get_messages(self, key: K) -> dict[int, M]:
        group = self._messages.setdefault(key, {})
        return dict(sorted(group.items()))

    def check_for_quorum(self, key: K = _ANY) -> dict[int, M] | None:
        """Return the quorum's messages for ``key`` (or any key), else None."""
        if key is _ANY:
            for candidate in sorted(self._messages):
                quorum = self.check_for_quorum(candidate)
                if quorum is not None:
                    return quorum
            return None
        group = self._messages.setdefault(key, {})
        if len(group) >= self.num_required:
            return dict(sorted(group.items()))
        return None

    def add_and_check_for_quorum(self, key: K, replica_idx: int, msg: M) -> dict[int, M] | None:
        # A repeated message from the same replica replaces the earlier one.
        self._messages.setdefault(key, {})[replica_idx] = msg
        return self.check_for_quorum(key)

    def add(self, key: K, replica_idx: int, msg: M) -> None:
        self.add_and_check_for_quorum(key, replica_idx, msg)