"""The Viewstamped Replication client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from vrstore.common import (
    Client,
    Configuration,
    Continuation,
    ErrorCode,
    ErrorContinuation,
    Timeout,
    Transport,
)
from vrstore.log import Request
from vrstore.vrmessages import (
    ReplyMessage,
    RequestMessage,
    UnloggedReplyMessage,
    UnloggedRequestMessage,
)

__all__ = ["VRClient"]

_log = logging.getLogger(__name__)

RESEND_TIMEOUT_MS = 10000


@dataclass
class _PendingRequest:
    request: Any
    client_req_id: int
    continuation: Continuation
    timer: Timeout
    error_continuation: ErrorContinuation | None = None


class VRClient(Client):
    """Sends requests to a VR replica group and resends them until answered."""

    def __init__(self, config: Configuration, transport: Transport, clientid: int = 0):
        super().__init__(config, transport, clientid)
        self.last_req_id = 0
        self._pending: dict[int, _PendingRequest] = {}

    @property
    def pending_request_ids(self) -> list[int]:
        return sorted(self._pending)

    def invoke(
        self,
        request: Any,
        continuation: Continuation,
        error_continuation: ErrorContinuation | None = None,
    ) -> None:
        # Logged requests are resent until answered; they never report an error.
        self.last_req_id += 1
        req_id = self.last_req_id
        timer = Timeout(self.transport, RESEND_TIMEOUT_MS, lambda: self._resend_request(req_id))
        pending = _PendingRequest(request, req_id, continuation, timer)
        self._pending[req_id] = pending
        self._send_request(pending)

    def invoke_unlogged(
        self,
        replica_idx: int,
        request: Any,
        continuation: Continuation,
        error_continuation: ErrorContinuation | None = None,
        timeout: int = Client.DEFAULT_UNLOGGED_OP_TIMEOUT,
    ) -> None:
        self.last_req_id += 1
        req_id = self.last_req_id
        message = UnloggedRequestMessage(
            Request(op=request, clientid=self.clientid, clientreqid=req_id)
        )
        if not self.transport.send_message_to_replica(self, replica_idx, message):
            _log.warning("Could not send unlogged request to replica %d.", replica_idx)
            return
        timer = Timeout(self.transport, timeout, lambda: self._unlogged_timed_out(req_id))
        self._pending[req_id] = _PendingRequest(
            request, req_id, continuation, timer, error_continuation
        )
        timer.start()

    def receive_message(self, remote: Any, message: Any) -> None:
        if isinstance(message, (ReplyMessage, UnloggedReplyMessage)):
            self._handle_reply(message.client_req_id, message.reply)
        else:
            super().receive_message(remote, message)

    def _send_request(self, pending: _PendingRequest) -> None:
        message = RequestMessage(
            Request(op=pending.request, clientid=self.clientid, clientreqid=pending.client_req_id)
        )
        if self.transport.send_message_to_all(self, message):
            pending.timer.reset()
        else:
            _log.warning("Could not send request to replicas.")
            pending.timer.stop()
            self._pending.pop(pending.client_req_id, None)

    def _resend_request(self, req_id: int) -> None:
        pending = self._pending.get(req_id)
        if pending is None:
            return
        _log.warning("Client timeout; resending request: %d", req_id)
        self._send_request(pending)

    def _handle_reply(self, req_id: int, reply: Any) -> None:
        pending = self._pending.pop(req_id, None)
        if pending is None:
            return
        pending.timer.stop()
        pending.continuation(pending.request, reply)

    def _unlogged_timed_out(self, req_id: int) -> None:
        pending = self._pending.pop(req_id, None)
        if pending is None:
            return
        _log.warning("Unlogged request timed out")
        pending.timer.stop()
        if pending.error_continuation is not None:
            pending.error_continuation(pending.request, ErrorCode.TIMEOUT)