"""The replicated operation log, optionally hash-chained."""

from __future__ import annotations

import dataclasses
import enum
import hashlib
import struct
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from vrstore.viewstamp import Viewstamp

__all__ = [
    "EMPTY_HASH",
    "Log",
    "LogEntry",
    "LogEntryState",
    "Request",
    "compute_hash",
]

EMPTY_HASH = bytes(hashlib.sha1().digest_size)


class LogEntryState(enum.IntEnum):
    COMMITTED = 0
    PREPARED = 1
    SPECULATIVE = 2
    FASTPREPARED = 3


@dataclass(frozen=True)
class Request:
    """A client operation as it is stored in the log."""

    op: str | bytes = ""
    clientid: int = 0
    clientreqid: int = 0

    @property
    def op_bytes(self) -> bytes:
        return self.op.encode("utf-8") if isinstance(self.op, str) else bytes(self.op)


@dataclass
class LogEntry:
    viewstamp: Viewstamp
    state: LogEntryState
    request: Request
    hash: bytes = b""
    prev_client_req_opnum: int = 0
    reply_message: Any = None


def compute_hash(last_hash: bytes, entry: LogEntry) -> bytes:
    """Chain ``entry`` onto ``last_hash`` with SHA-1."""
    digest = hashlib.sha1()
    digest.update(last_hash)
    digest.update(
        struct.pack(
            "<QQQQ",
            entry.viewstamp.view,
            entry.viewstamp.opnum,
            entry.request.clientid,
            entry.request.clientreqid,
        )
    )
    digest.update(entry.request.op_bytes)
    return digest.digest()


class Log:
    """An in-memory log of operations numbered from ``start``."""

    def __init__(self, use_hash: bool, start: int = 1, initial_hash: bytes = EMPTY_HASH):
        if start == 1 and initial_hash != EMPTY_HASH:
            raise ValueError("a log starting at opnum 1 must use the empty hash")
        self.use_hash = use_hash
        self._start = start
        self._initial_hash = initial_hash
        self._entries: list[LogEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self._entries)

    def append(self, vs: Viewstamp, req: Request, state: LogEntryState) -> LogEntry:
        expected = self._start if not self._entries else self.last_opnum() + 1
        if vs.opnum != expected:
            raise ValueError(f"expected opnum {expected}, got {vs.opnum}")
        entry = LogEntry(viewstamp=vs, state=state, request=req)
        if self.use_hash:
            entry.hash = compute_hash(self.last_hash(), entry)
        self._entries.append(entry)
        return entry

    def find(self, opnum: int) -> LogEntry | None:
        index = opnum - self._start
        if index < 0 or index >= len(self._entries):
            return None
        return self._entries[index]

    def set_status(self, opnum: int, state: LogEntryState) -> bool:
        entry = self.find(opnum)
        if entry is None:
            return False
        entry.state = state
        return True

    def set_request(self, opnum: int, req: Request) -> bool:
        if self.use_hash:
            raise RuntimeError("cannot replace a request in a hashed log")
        entry = self.find(opnum)
        if entry is None:
            return False
        entry.request = req
        return True

    def remove_after(self, opnum: int) -> None:
        """Drop the entry at ``opnum`` and every later entry."""
        if opnum > self.last_opnum():
            return
        if opnum < self._start:
            raise ValueError(f"opnum {opnum} precedes the log start {self._start}")
        del self._entries[opnum - self._start:]

    def last(self) -> LogEntry | None:
        return self._entries[-1] if self._entries else None

    def last_viewstamp(self) -> Viewstamp:
        if not self._entries:
            return Viewstamp(0, self._start - 1)
        return self._entries[-1].viewstamp

    def last_opnum(self) -> int:
        if not self._entries:
            return self._start - 1
        return self._entries[-1].viewstamp.opnum

    def first_opnum(self) -> int:
        return self._start

    def is_empty(self) -> bool:
        return not self._entries

    def last_hash(self) -> bytes:
        if not self._entries:
            return self._initial_hash
        return self._entries[-1].hash

    def dump(self, start: int) -> list[LogEntry]:
        """Return copies of the entries from ``start`` to the end."""
        first = max(start, self._start) - self._start
        return [dataclasses.replace(entry) for entry in self._entries[first:]]

    def install(self, entries: Iterable[LogEntry]) -> None:
        """Merge ``entries`` into the log, replacing it from the first divergence."""
        incoming = list(entries)
        position = len(incoming)
        for index, new in enumerate(incoming):
            old = self.find(new.viewstamp.opnum)
            if old is None:
                position = index
                break
            if new.viewstamp.view != old.viewstamp.view:
                self.remove_after(new.viewstamp.opnum)
                position = index
                break
        for new in incoming[position:]:
            self.append(new.viewstamp, new.request, LogEntryState.PREPARED)