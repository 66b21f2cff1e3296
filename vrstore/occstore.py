"""Transactional stores; OCCStore validates transactions optimistically."""

from __future__ import annotations

import abc
from typing import Iterable

from vrstore.timestamp import Timestamp
from vrstore.transaction import ReplyStatus, Transaction

__all__ = ["OCCStore", "TxnStore"]


class TxnStore(abc.ABC):
    """The interface a replica uses to run transactions against a store."""

    @abc.abstractmethod
    def prepare(self, txn_id: int, txn: Transaction) -> ReplyStatus:
        """Validate ``txn`` and hold it until commit or abort."""

    @abc.abstractmethod
    def abort(self, txn_id: int, txn: Transaction | None = None) -> None:
        """Forget the transaction ``txn_id``."""

    @abc.abstractmethod
    def load(self, keys: Iterable[str], values: Iterable[str], timestamp: Timestamp) -> None:
        """Write initial data directly, outside any transaction."""

    @abc.abstractmethod
    def commit(self, txn_id: int, timestamp: int) -> None:
        """Apply the writes of the prepared transaction ``txn_id``."""


class OCCStore(TxnStore):
    """Optimistic concurrency control over a multi-versioned key-value store."""

    def __init__(self) -> None:
        self._prepared: dict[int, Transaction] = {}
        self._versions: dict[str, list[tuple[Timestamp, str]]] = {}

    @property
    def prepared(self) -> dict[int, Transaction]:
        return dict(self._prepared)

    def get(self, key: str) -> tuple[Timestamp, str]:
        """Return the newest ``(timestamp, value)`` of ``key``; raise KeyError if absent."""
        versions = self._versions.get(key)
        if not versions:
            raise KeyError(key)
        return versions[-1]

    def _put(self, keys: Iterable[str], values: Iterable[str], timestamp: Timestamp) -> None:
        for key, value in zip(keys, values, strict=True):
            self._versions.setdefault(key, []).append((timestamp, value))

    def prepare(self, txn_id: int, txn: Transaction) -> ReplyStatus:
        if txn_id in self._prepared:
            return ReplyStatus.OK
        pending_writes = self.prepared_writes()
        pending_read_writes = self.prepared_read_writes()
        if any(key in pending_writes for key in txn.read_set):
            self.abort(txn_id)
            return ReplyStatus.FAIL
        if any(key in pending_read_writes for key in txn.write_set):
            self.abort(txn_id)
            return ReplyStatus.FAIL
        self._prepared[txn_id] = txn
        return ReplyStatus.OK

    def abort(self, txn_id: int, txn: Transaction | None = None) -> None:
        self._prepared.pop(txn_id, None)

    def load(self, keys: Iterable[str], values: Iterable[str], timestamp: Timestamp) -> None:
        keys, values = list(keys), list(values)
        if len(keys) != len(values):
            raise ValueError("keys and values differ in length")
        self._put(keys, values, timestamp)

    def commit(self, txn_id: int, timestamp: int) -> None:
        txn = self._prepared.pop(txn_id, None) or Transaction()
        self._put(txn.write_set.keys(), txn.write_set.values(), Timestamp(timestamp))

    def prepared_writes(self) -> set[str]:
        """Every key written by a prepared transaction."""
        return {key for txn in self._prepared.values() for key in txn.write_set}

    def prepared_read_writes(self) -> set[str]:
        """Every key read or written by a prepared transaction."""
        keys = self.prepared_writes()
        keys.update(key for txn in self._prepared.values() for key in txn.read_set)
        return keys