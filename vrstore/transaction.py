"""A transaction's read and write sets."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping

from vrstore.timestamp import Timestamp

__all__ = ["ReplyStatus", "Transaction"]


class ReplyStatus(enum.IntEnum):
    OK = 0
    FAIL = 1
    RETRY = 2
    ABSTAIN = 3
    TIMEOUT = 4
    NETWORK_FAILURE = 5


@dataclass
class Transaction:
    read_set: dict[str, Timestamp] = field(default_factory=dict)
    write_set: dict[str, str] = field(default_factory=dict)

    def add_read(self, key: str, read_time: Timestamp) -> None:
        self.read_set[key] = read_time

    def add_write(self, key: str, value: str) -> None:
        self.write_set[key] = value

    def to_message(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "readset": [
                {"key": key, "readtime": ts.to_message()} for key, ts in self.read_set.items()
            ],
            "writeset": [
                {"key": key, "value": value} for key, value in self.write_set.items()
            ],
        }

    @classmethod
    def from_message(cls, msg: Mapping[str, Any]) -> "Transaction":
        txn = cls()
        for read in msg.get("readset", ()):
            txn.add_read(read["key"], Timestamp.from_message(read.get("readtime", {})))
        for write in msg.get("writeset", ()):
            txn.add_write(write["key"], write["value"])
        return txn