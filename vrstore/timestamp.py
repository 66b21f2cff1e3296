"""Transaction timestamps ordered by time, then by id."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

__all__ = ["Timestamp"]


@dataclass(frozen=True, order=True)
class Timestamp:
    timestamp: int = 0
    id: int = 0

    def is_valid(self) -> bool:
        return self.timestamp > 0 and self.id > 0

    def to_message(self) -> dict[str, int]:
        return {"timestamp": self.timestamp, "id": self.id}

    @classmethod
    def from_message(cls, msg: Mapping[str, Any]) -> "Timestamp":
        return cls(int(msg.get("timestamp", 0)), int(msg.get("id", 0)))