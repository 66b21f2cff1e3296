"""Shared pieces of the replication layer: transports, timeouts, clients and replicas."""

from __future__ import annotations

import abc
import enum
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Hashable

from vrstore.log import Request

__all__ = [
    "AppReplica",
    "Client",
    "Configuration",
    "Continuation",
    "ErrorCode",
    "ErrorContinuation",
    "Replica",
    "ReplicaStatus",
    "Timeout",
    "Transport",
]

_MAX_CLIENT_ID = 1 << 64


class ErrorCode(enum.Enum):
    """Why a client's request failed."""

    # The request took too long (failed replicas, slow network).
    TIMEOUT = enum.auto()
    # A consensus operation saw replies and confirms from different views.
    MISMATCHED_CONSENSUS_VIEWS = enum.auto()

    def __str__(self) -> str:
        return self.name


class ReplicaStatus(enum.Enum):
    NORMAL = enum.auto()
    VIEW_CHANGE = enum.auto()
    RECOVERING = enum.auto()


Continuation = Callable[[Any, str], None]
ErrorContinuation = Callable[[Any, ErrorCode], None]


class Transport(abc.ABC):
    """Delivers messages between clients and replicas and runs timers."""

    @abc.abstractmethod
    def register(self, receiver: Any, config: "Configuration", replica_idx: int) -> None:
        """Attach ``receiver``; clients register with index -1."""

    @abc.abstractmethod
    def send_message(self, src: Any, dst: Any, message: Any) -> bool:
        """Send ``message`` to the address ``dst``; return whether it was sent."""

    @abc.abstractmethod
    def send_message_to_replica(self, src: Any, replica_idx: int, message: Any) -> bool:
        """Send ``message`` to one replica; return whether it was sent."""

    @abc.abstractmethod
    def send_message_to_all(self, src: Any, message: Any) -> bool:
        """Send ``message`` to every replica; return whether it was sent."""

    @abc.abstractmethod
    def schedule(self, delay_ms: int, callback: Callable[[], None]) -> Hashable:
        """Run ``callback`` after ``delay_ms`` milliseconds; return a handle."""

    @abc.abstractmethod
    def cancel(self, handle: Hashable) -> None:
        """Cancel a timer returned by :meth:`schedule`, if it is still pending."""


class Timeout:
    """A repeating timer: once started it fires every ``timeout_ms`` until stopped."""

    def __init__(self, transport: Transport, timeout_ms: int, callback: Callable[[], None]):
        self.transport = transport
        self.timeout_ms = timeout_ms
        self._callback = callback
        self._handle: Hashable | None = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Restart the countdown from now."""
        self.stop()
        self._handle = self.transport.schedule(self.timeout_ms, self._fire)

    def stop(self) -> None:
        if self._handle is not None:
            self.transport.cancel(self._handle)
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self.reset()
        self._callback()


@dataclass(frozen=True)
class Configuration:
    """A replica group of ``n`` members tolerating ``f`` failures."""

    n: int
    f: int | None = None
    addresses: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        if self.n <= 0:
            raise ValueError("a configuration needs at least one replica")
        f = (self.n - 1) // 2 if self.f is None else self.f
        if f < 0 or self.n < 2 * f + 1:
            raise ValueError(f"{self.n} replicas cannot tolerate {f} failures")
        object.__setattr__(self, "f", f)
        object.__setattr__(self, "addresses", tuple(self.addresses))
        if self.addresses and len(self.addresses) != self.n:
            raise ValueError("one address is needed for each replica")

    def quorum_size(self) -> int:
        return self.f + 1  # type: ignore[operator]

    def leader_index(self, view: int) -> int:
        return view % self.n


class AppReplica:
    """The application a replica runs operations against; override as needed."""

    def leader_upcall(self, opnum: int, op: Any) -> tuple[bool, Any]:
        """Run ``op`` on the leader; return (replicate, result)."""
        return True, op

    def replica_upcall(self, opnum: int, op: Any) -> Any:
        """Run ``op`` on every replica; return the result."""
        return ""

    def unlogged_upcall(self, op: Any) -> Any:
        """Run an unreplicated ``op`` on a single replica; return the result."""
        return ""


class Client(abc.ABC):
    """A replication client identified by a non-zero 64-bit id."""

    DEFAULT_UNLOGGED_OP_TIMEOUT = 1000  # milliseconds

    def __init__(self, config: Configuration, transport: Transport, clientid: int = 0):
        if not 0 <= clientid < _MAX_CLIENT_ID:
            raise ValueError("client id must fit in 64 bits")
        while clientid == 0:
            clientid = secrets.randbits(64)
        self.config = config
        self.transport = transport
        self.clientid = clientid
        transport.register(self, config, -1)

    @abc.abstractmethod
    def invoke(
        self,
        request: Any,
        continuation: Continuation,
        error_continuation: ErrorContinuation | None = None,
    ) -> None:
        """Submit a replicated operation."""

    @abc.abstractmethod
    def invoke_unlogged(
        self,
        replica_idx: int,
        request: Any,
        continuation: Continuation,
        error_continuation: ErrorContinuation | None = None,
        timeout: int = DEFAULT_UNLOGGED_OP_TIMEOUT,
    ) -> None:
        """Run an operation on one replica without replicating it."""

    def receive_message(self, remote: Any, message: Any) -> None:
        raise TypeError(f"Received unexpected message type: {type(message).__name__}")


class Replica(abc.ABC):
    """A member of a replica group that forwards operations to its application."""

    def __init__(
        self,
        configuration: Configuration,
        my_idx: int,
        transport: Transport,
        app: AppReplica,
    ):
        self.configuration = configuration
        self.my_idx = my_idx
        self.transport = transport
        self.app = app
        self.status = ReplicaStatus.NORMAL
        transport.register(self, configuration, my_idx)

    @abc.abstractmethod
    def receive_message(self, remote: Any, message: Any) -> None:
        """Handle a message delivered by the transport."""

    def leader_upcall(self, opnum: int, op: Any) -> tuple[bool, Any]:
        return self.app.leader_upcall(opnum, op)

    def replica_upcall(self, opnum: int, op: Any) -> Any:
        return self.app.replica_upcall(opnum, op)

    def unlogged_upcall(self, op: Any) -> Any:
        return self.app.unlogged_upcall(op)

    def execute(self, opnum: int, request: Request) -> Any:
        """Run a logged request and return its reply."""
        return self.replica_upcall(opnum, request.op)

    def execute_unlogged(self, request: Request) -> Any:
        """Run an unlogged request and return its reply."""
        return self.unlogged_upcall(request.op)