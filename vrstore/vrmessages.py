"""Messages exchanged by Viewstamped Replication clients and replicas."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from vrstore.log import LogEntry, Request

__all__ = [
    "CommitMessage",
    "DoViewChangeMessage",
    "PrepareMessage",
    "PrepareOKMessage",
    "ReplyMessage",
    "RequestMessage",
    "RequestStateTransferMessage",
    "StartViewChangeMessage",
    "StartViewMessage",
    "StateTransferMessage",
    "UnloggedReplyMessage",
    "UnloggedRequestMessage",
]


def _freeze(message: Any, name: str) -> None:
    object.__setattr__(message, name, tuple(getattr(message, name)))


@dataclass(frozen=True)
class RequestMessage:
    req: Request = field(default_factory=Request)


@dataclass(frozen=True)
class UnloggedRequestMessage:
    req: Request = field(default_factory=Request)


@dataclass(frozen=True)
class ReplyMessage:
    view: int = 0
    opnum: int = 0
    reply: Any = ""
    client_req_id: int = 0


@dataclass(frozen=True)
class UnloggedReplyMessage:
    reply: Any = ""
    client_req_id: int = 0


@dataclass(frozen=True)
class PrepareMessage:
    """A batch of requests numbered ``batch_start`` through ``opnum``."""

    view: int = 0
    opnum: int = 0
    batch_start: int = 0
    requests: tuple[Request, ...] = ()

    def __post_init__(self) -> None:
        _freeze(self, "requests")


@dataclass(frozen=True)
class PrepareOKMessage:
    view: int = 0
    opnum: int = 0
    replica_idx: int = 0


@dataclass(frozen=True)
class CommitMessage:
    view: int = 0
    opnum: int = 0


@dataclass(frozen=True)
class RequestStateTransferMessage:
    view: int = 0
    opnum: int = 0


@dataclass(frozen=True)
class StateTransferMessage:
    view: int = 0
    opnum: int = 0
    entries: tuple[LogEntry, ...] = ()

    def __post_init__(self) -> None:
        _freeze(self, "entries")


@dataclass(frozen=True)
class StartViewChangeMessage:
    view: int = 0
    replica_idx: int = 0
    last_committed: int = 0


@dataclass(frozen=True)
class DoViewChangeMessage:
    view: int = 0
    last_normal_view: int = 0
    last_op: int = 0
    last_committed: int = 0
    replica_idx: int = 0
    entries: tuple[LogEntry, ...] = ()

    def __post_init__(self) -> None:
        _freeze(self, "entries")


@dataclass(frozen=True)
class StartViewMessage:
    view: int = 0
    last_op: int = 0
    last_committed: int = 0
    entries: tuple[LogEntry, ...] = ()

    def __post_init__(self) -> None:
        _freeze(self, "entries")