"""A client that buffers a transaction's reads and writes for one shard."""

from __future__ import annotations

import abc
from typing import Sequence

from vrstore.promise import Promise
from vrstore.timestamp import Timestamp
from vrstore.transaction import ReplyStatus, Transaction

__all__ = [
    "ABORT_TIMEOUT",
    "BufferClient",
    "COMMIT_RETRIES",
    "COMMIT_TIMEOUT",
    "GET_RETRIES",
    "GET_TIMEOUT",
    "PREPARE_RETRIES",
    "PREPARE_TIMEOUT",
    "PUT_TIMEOUT",
    "RETRY_TIMEOUT",
    "TxnClient",
]

DEFAULT_TIMEOUT_MS = 250
DEFAULT_MULTICAST_TIMEOUT_MS = 500
GET_TIMEOUT = 10000
GET_RETRIES = 1
PUT_TIMEOUT = 250
PREPARE_TIMEOUT = 10000
PREPARE_RETRIES = 1
COMMIT_TIMEOUT = 10000
COMMIT_RETRIES = 1
ABORT_TIMEOUT = 1000
RETRY_TIMEOUT = 500000


class TxnClient(abc.ABC):
    """A single-shard transactional client that replies through promises."""

    @abc.abstractmethod
    def begin(self, tid: int) -> None:
        """Start transaction ``tid``."""

    @abc.abstractmethod
    def audit(self, seq: int, promise: Promise) -> bool:
        """Audit the ledger from ``seq``; return whether a request was sent."""

    @abc.abstractmethod
    def get_proof(self, block: int, keys: Sequence[str], promise: Promise) -> bool:
        """Ask for proofs of ``keys`` at ``block``; return whether a request was sent."""

    @abc.abstractmethod
    def batch_get(self, tid: int, keys: Sequence[str], promise: Promise) -> None:
        """Read ``keys``."""

    @abc.abstractmethod
    def get_range(self, tid: int, start: str, end: str, promise: Promise) -> None:
        """Read every key from ``start`` to ``end``."""

    @abc.abstractmethod
    def prepare(self, tid: int, txn: Transaction, timestamp: Timestamp, promise: Promise) -> None:
        """Prepare ``txn`` for commit."""

    @abc.abstractmethod
    def commit(
        self,
        tid: int,
        txn: Transaction,
        versions: Sequence[tuple[str, int]],
        timestamp: int,
        promise: Promise,
    ) -> None:
        """Commit ``txn`` at ``timestamp``, reading the requested versions."""

    @abc.abstractmethod
    def abort(self, tid: int, txn: Transaction, promise: Promise) -> None:
        """Abort transaction ``tid``."""


def _promise(promise: Promise | None) -> Promise:
    return promise if promise is not None else Promise()


class BufferClient:
    """Keeps a transaction's read and write sets locally until prepare and commit."""

    def __init__(self, txnclient: TxnClient):
        self.txnclient = txnclient
        self.transaction = Transaction()
        self.tid = 0
        self.history: list[tuple[str, int]] = []
        self.buffer: list[str] = []

    def begin(self, tid: int) -> None:
        self.transaction = Transaction()
        self.tid = tid
        self.txnclient.begin(tid)
        self.history.clear()
        self.buffer.clear()

    def get_n_versions(self, key: str, n: int, promise: Promise | None = None) -> Promise:
        """Ask for the last ``n`` versions of ``key`` to be read at commit."""
        promise = _promise(promise)
        self.history.append((key, n))
        promise.reply(ReplyStatus.OK)
        return promise

    def get(self, key: str, promise: Promise | None = None) -> Promise:
        """Record a read of ``key`` unless the transaction already wrote it."""
        promise = _promise(promise)
        if key not in self.transaction.write_set and key not in self.transaction.read_set:
            self.transaction.add_read(key, Timestamp())
        promise.reply(ReplyStatus.OK)
        return promise

    def buffer_key(self, key: str) -> None:
        self.buffer.append(key)

    def _record_reads(self, promise: Promise) -> None:
        result = promise.wait()
        if result.status != ReplyStatus.OK:
            return
        for index, key in enumerate(result.values):
            read_time = result.timestamps[index] if index < len(result.timestamps) else Timestamp()
            self.transaction.add_read(key, read_time)

    def batch_get(self, promise: Promise | None = None) -> Promise:
        """Read every buffered key at once, then empty the buffer."""
        promise = _promise(promise)
        self.txnclient.batch_get(self.tid, list(self.buffer), promise)
        self._record_reads(promise)
        self.buffer.clear()
        return promise

    def get_range(self, start: str, end: str, promise: Promise | None = None) -> Promise:
        promise = _promise(promise)
        self.txnclient.get_range(self.tid, start, end, promise)
        self._record_reads(promise)
        return promise

    def put(self, key: str, value: str, promise: Promise | None = None) -> Promise:
        """Buffer a write; this always succeeds."""
        promise = _promise(promise)
        self.transaction.add_write(key, value)
        promise.reply(ReplyStatus.OK)
        return promise

    def prepare(self, timestamp: Timestamp | None = None, promise: Promise | None = None) -> Promise:
        promise = _promise(promise)
        self.txnclient.prepare(
            self.tid, self.transaction, timestamp if timestamp is not None else Timestamp(), promise
        )
        return promise

    def commit(self, timestamp: int = 0, promise: Promise | None = None) -> Promise:
        promise = _promise(promise)
        self.txnclient.commit(self.tid, self.transaction, list(self.history), timestamp, promise)
        return promise

    def abort(self, promise: Promise | None = None) -> Promise:
        promise = _promise(promise)
        self.txnclient.abort(self.tid, Transaction(), promise)
        return promise

    def verify(self, block: int, keys: Sequence[str], promise: Promise | None = None) -> bool:
        return self.txnclient.get_proof(block, list(keys), _promise(promise))

    def audit(self, seq: int, promise: Promise | None = None) -> bool:
        return self.txnclient.audit(seq, _promise(promise))