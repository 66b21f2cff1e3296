"""A one-shot reply slot that a waiting thread blocks on."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from vrstore.timestamp import Timestamp

__all__ = ["Promise", "PromiseResult", "VerifyStatus"]


class VerifyStatus(enum.IntEnum):
    PASS = 0
    UNVERIFIED = 1
    FAILED = 9


@dataclass
class PromiseResult:
    status: int
    timestamp: Timestamp = field(default_factory=Timestamp)
    value: str = ""
    timestamps: list[Timestamp] = field(default_factory=list)
    values: dict[str, str] = field(default_factory=dict)
    unverified_keys: list[str] = field(default_factory=list)
    estimated_blocks: list[int] = field(default_factory=list)
    verify: VerifyStatus | None = None


class Promise:
    """Filled by :meth:`reply`, read by :meth:`wait`."""

    def __init__(self, timeout_ms: int = 1000):
        self.timeout = timeout_ms
        self._cond = threading.Condition()
        self._done = False
        self._status = 0
        self._timestamp = Timestamp()
        self._value = ""
        self._timestamps: list[Timestamp] = []
        self._values: dict[str, str] = {}
        self._unverified_keys: list[str] = []
        self._estimated_blocks: list[int] = []
        self._verify: VerifyStatus | None = None

    @property
    def done(self) -> bool:
        with self._cond:
            return self._done

    def reply(
        self,
        status: int,
        timestamp: Timestamp | None = None,
        value: str | None = None,
        timestamps: Iterable[Timestamp] = (),
        values: Mapping[str, str] | None = None,
        unverified_keys: Iterable[str] = (),
        estimated_blocks: Iterable[int] = (),
        verify: VerifyStatus | None = None,
    ) -> None:
        """Record a reply and wake every waiter."""
        with self._cond:
            if timestamp is not None:
                self._timestamp = timestamp
            if value is not None:
                self._value = value
            if values:
                for key, val in values.items():
                    self._values.setdefault(key, val)
            self._timestamps.extend(timestamps)
            self._unverified_keys.extend(unverified_keys)
            self._estimated_blocks.extend(estimated_blocks)
            if verify is not None:
                self._verify = verify
            self._status = status
            self._done = True
            self._cond.notify_all()

    def wait(self, timeout: float | None = None) -> PromiseResult:
        """Block until replied to; raise TimeoutError after ``timeout`` seconds."""
        with self._cond:
            if not self._cond.wait_for(lambda: self._done, timeout):
                raise TimeoutError("promise was not replied to in time")
            return PromiseResult(
                status=self._status,
                timestamp=self._timestamp,
                value=self._value,
                timestamps=list(self._timestamps),
                values=dict(sorted(self._values.items())),
                unverified_keys=list(self._unverified_keys),
                estimated_blocks=list(self._estimated_blocks),
                verify=self._verify,
            )