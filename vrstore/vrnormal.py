"""Normal-case operation of a Viewstamped Replication replica."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from vrstore.common import AppReplica, Configuration, Replica, ReplicaStatus, Timeout, Transport
from vrstore.log import Log, LogEntryState, Request
from vrstore.quorumset import QuorumSet
from vrstore.viewstamp import Viewstamp
from vrstore.vrmessages import (
    CommitMessage,
    PrepareMessage,
    PrepareOKMessage,
    ReplyMessage,
    RequestMessage,
    RequestStateTransferMessage,
    StartViewChangeMessage,
    UnloggedReplyMessage,
    UnloggedRequestMessage,
)

__all__ = ["ClientTableEntry", "NormalCaseReplica"]

_log = logging.getLogger(__name__)

VIEW_CHANGE_TIMEOUT_MS = 5000
NULL_COMMIT_TIMEOUT_MS = 1000
STATE_TRANSFER_TIMEOUT_MS = 1000
RESEND_PREPARE_TIMEOUT_MS = 500
CLOSE_BATCH_TIMEOUT_MS = 300


@dataclass
class ClientTableEntry:
    """The latest request seen from a client and, once executed, its reply."""

    last_req_id: int = 0
    replied: bool = False
    reply: ReplyMessage | None = None


class NormalCaseReplica(Replica):
    """A VR replica handling requests, prepares, acknowledgements and commits."""

    def __init__(
        self,
        config: Configuration,
        my_idx: int,
        transport: Transport,
        batch_size: int,
        app: AppReplica,
    ):
        super().__init__(config, my_idx, transport, app)
        self.batch_size = batch_size
        self.view = 0
        self.last_op = 0
        self.last_committed = 0
        self.last_request_state_transfer_view = 0
        self.last_request_state_transfer_opnum = 0
        self.last_batch_end = 0
        self.pending_prepares: list[tuple[Any, PrepareMessage]] = []
        self.last_prepare = PrepareMessage()
        self.log = Log(False)
        self.client_addresses: dict[int, Any] = {}
        self.client_table: dict[int, ClientTableEntry] = {}

        required = config.quorum_size() - 1
        self.prepare_ok_quorum: QuorumSet[Viewstamp, PrepareOKMessage] = QuorumSet(required)
        self.start_view_change_quorum: QuorumSet[int, Any] = QuorumSet(required)
        self.do_view_change_quorum: QuorumSet[int, Any] = QuorumSet(required)

        if batch_size > 1:
            _log.info("Batching enabled; batch size %d", batch_size)

        self.view_change_timeout = Timeout(
            transport, VIEW_CHANGE_TIMEOUT_MS, lambda: self._start_view_change(self.view + 1)
        )
        self.null_commit_timeout = Timeout(
            transport, NULL_COMMIT_TIMEOUT_MS, self._send_null_commit
        )
        self.state_transfer_timeout = Timeout(
            transport, STATE_TRANSFER_TIMEOUT_MS, self._forget_state_transfer_request
        )
        self.state_transfer_timeout.start()
        self.resend_prepare_timeout = Timeout(
            transport, RESEND_PREPARE_TIMEOUT_MS, self._resend_prepare
        )
        self.close_batch_timeout = Timeout(
            transport, CLOSE_BATCH_TIMEOUT_MS, self._close_batch
        )

        if self.am_leader():
            self.null_commit_timeout.start()
        else:
            self.view_change_timeout.start()

    # -- helpers ---------------------------------------------------------

    def _error(self, text: str) -> RuntimeError:
        return RuntimeError(f"[{self.my_idx}] {text}")

    def _warn(self, text: str) -> None:
        _log.warning("[%d] %s", self.my_idx, text)

    def _leader_index(self) -> int:
        return self.configuration.leader_index(self.view)

    def _forget_state_transfer_request(self) -> None:
        self.last_request_state_transfer_view = 0
        self.last_request_state_transfer_opnum = 0

    def am_leader(self) -> bool:
        """Whether this replica leads the current view."""
        return self._leader_index() == self.my_idx

    def commit_up_to(self, upto: int) -> None:
        """Execute every logged operation through ``upto`` and answer its client."""
        while self.last_committed < upto:
            self.last_committed += 1
            entry = self.log.find(self.last_committed)
            if entry is None:
                raise self._error(f"Did not find operation {self.last_committed} in log")

            result = self.execute(self.last_committed, entry.request)
            reply = ReplyMessage(
                view=entry.viewstamp.view,
                opnum=entry.viewstamp.opnum,
                reply=result,
                client_req_id=entry.request.clientreqid,
            )
            self.log.set_status(self.last_committed, LogEntryState.COMMITTED)

            cte = self.client_table.setdefault(entry.request.clientid, ClientTableEntry())
            # A later request from this client means this one is already answered.
            if cte.last_req_id <= entry.request.clientreqid:
                cte.last_req_id = entry.request.clientreqid
                cte.replied = True
                cte.reply = reply

            address = self.client_addresses.get(entry.request.clientid)
            if address is not None:
                self.transport.send_message(self, address, reply)

    def _send_prepare_oks(self, old_last_op: int) -> None:
        for opnum in range(old_last_op, self.last_op + 1):
            if opnum <= self.last_committed:
                continue
            entry = self.log.find(opnum)
            if entry is None:
                raise self._error(f"Did not find operation {opnum} in log")
            if entry.state != LogEntryState.PREPARED:
                raise self._error(f"operation {opnum} is not in the prepared state")
            self._update_client_table(entry.request)
            reply = PrepareOKMessage(view=self.view, opnum=opnum, replica_idx=self.my_idx)
            if not self.transport.send_message_to_replica(self, self._leader_index(), reply):
                self._warn("Failed to send PrepareOK message to leader")

    def _request_state_transfer(self) -> None:
        if (
            self.last_request_state_transfer_opnum != 0
            and self.last_request_state_transfer_view == self.view
            and self.last_request_state_transfer_opnum == self.last_committed
        ):
            return
        message = RequestStateTransferMessage(view=self.view, opnum=self.last_committed)
        self.last_request_state_transfer_view = self.view
        self.last_request_state_transfer_opnum = self.last_committed
        if not self.transport.send_message_to_all(self, message):
            self._warn("Failed to send RequestStateTransfer message to all replicas")

    def _enter_view(self, new_view: int) -> None:
        self.view = new_view
        self.status = ReplicaStatus.NORMAL
        self.last_batch_end = self.last_op

        if self.am_leader():
            self.view_change_timeout.stop()
            self.null_commit_timeout.start()
        else:
            self.view_change_timeout.start()
            self.null_commit_timeout.stop()
            self.resend_prepare_timeout.stop()
            self.close_batch_timeout.stop()

        self.prepare_ok_quorum.clear()
        self.start_view_change_quorum.clear()
        self.do_view_change_quorum.clear()

    def _start_view_change(self, new_view: int) -> None:
        self.view = new_view
        self.status = ReplicaStatus.VIEW_CHANGE

        self.view_change_timeout.reset()
        self.null_commit_timeout.stop()
        self.resend_prepare_timeout.stop()
        self.close_batch_timeout.stop()

        message = StartViewChangeMessage(
            view=new_view, replica_idx=self.my_idx, last_committed=self.last_committed
        )
        if not self.transport.send_message_to_all(self, message):
            self._warn("Failed to send StartViewChange message to all replicas")

    def _send_null_commit(self) -> None:
        if not self.am_leader():
            raise self._error("only the leader sends null commits")
        message = CommitMessage(view=self.view, opnum=self.last_committed)
        if not self.transport.send_message_to_all(self, message):
            self._warn("Failed to send null COMMIT message to all replicas")

    def _update_client_table(self, req: Request) -> None:
        entry = self.client_table.setdefault(req.clientid, ClientTableEntry())
        if entry.last_req_id > req.clientreqid:
            raise self._error(
                f"request {req.clientreqid} of client {req.clientid} is older than "
                f"{entry.last_req_id}"
            )
        if entry.last_req_id == req.clientreqid:
            return
        entry.last_req_id = req.clientreqid
        entry.replied = False
        entry.reply = None

    def _resend_prepare(self) -> None:
        if not self.am_leader():
            raise self._error("only the leader resends prepares")
        if self.last_op == self.last_committed:
            return
        if not self.transport.send_message_to_all(self, self.last_prepare):
            self._warn("Failed to resend prepare message to all replicas")

    def _close_batch(self) -> None:
        if not self.am_leader():
            raise self._error("only the leader closes batches")
        if self.last_batch_end >= self.last_op:
            raise self._error("there is no open batch to close")

        batch_start = self.last_batch_end + 1
        requests = []
        for opnum in range(batch_start, self.last_op + 1):
            entry = self.log.find(opnum)
            if entry is None or entry.viewstamp != Viewstamp(self.view, opnum):
                raise self._error(f"operation {opnum} is missing from the current view")
            requests.append(entry.request)
        prepare = PrepareMessage(
            view=self.view, opnum=self.last_op, batch_start=batch_start, requests=requests
        )
        self.last_prepare = prepare

        if not self.transport.send_message_to_all(self, prepare):
            self._warn("Failed to send prepare message to all replicas")
        self.last_batch_end = self.last_op

        self.resend_prepare_timeout.reset()
        self.close_batch_timeout.stop()

    # -- message dispatch ------------------------------------------------

    def _message_handlers(self) -> dict[type, Callable[[Any, Any], None]]:
        return {
            RequestMessage: self._handle_request,
            UnloggedRequestMessage: self._handle_unlogged_request,
            PrepareMessage: self._handle_prepare,
            PrepareOKMessage: self._handle_prepare_ok,
            CommitMessage: self._handle_commit,
        }

    def receive_message(self, remote: Any, message: Any) -> None:
        handler = self._message_handlers().get(type(message))
        if handler is None:
            raise TypeError(
                f"[{self.my_idx}] Received unexpected message type in VR proto: "
                f"{type(message).__name__}"
            )
        handler(remote, message)

    def _handle_request(self, remote: Any, msg: RequestMessage) -> None:
        if self.status != ReplicaStatus.NORMAL or not self.am_leader():
            return
        req = msg.req
        self.client_addresses[req.clientid] = remote

        entry = self.client_table.get(req.clientid)
        if entry is not None:
            if req.clientreqid < entry.last_req_id:
                return
            if req.clientreqid == entry.last_req_id:
                # A duplicate: resend the reply if there is one, else drop it.
                if entry.replied and not self.transport.send_message(self, remote, entry.reply):
                    self._warn("Failed to resend reply to client")
                return

        self._update_client_table(req)

        replicate, result = self.leader_upcall(self.last_committed, req.op)
        cte = self.client_table[req.clientid]

        if replicate:
            self.last_op += 1
            self.last_committed += 1
            reply = ReplyMessage(
                view=self.view, opnum=self.last_op, reply=result, client_req_id=req.clientreqid
            )
        else:
            reply = ReplyMessage(view=0, opnum=0, reply=result, client_req_id=req.clientreqid)
        cte.replied = True
        cte.reply = reply
        self.transport.send_message(self, remote, reply)

    def _handle_unlogged_request(self, remote: Any, msg: UnloggedRequestMessage) -> None:
        if self.status != ReplicaStatus.NORMAL:
            return
        reply = UnloggedReplyMessage(
            reply=self.execute_unlogged(msg.req), client_req_id=msg.req.clientreqid
        )
        if not self.transport.send_message(self, remote, reply):
            _log.warning("Failed to send reply message")

    def _send_prepare_ok(self, view: int, opnum: int) -> None:
        reply = PrepareOKMessage(view=view, opnum=opnum, replica_idx=self.my_idx)
        if not self.transport.send_message_to_replica(self, self._leader_index(), reply):
            self._warn("Failed to send PrepareOK message to leader")

    def _handle_prepare(self, remote: Any, msg: PrepareMessage) -> None:
        if self.status != ReplicaStatus.NORMAL or msg.view < self.view:
            return
        if msg.view > self.view:
            self._request_state_transfer()
            self.pending_prepares.append((remote, msg))
            return
        if self.am_leader():
            raise self._error("Unexpected PREPARE: I'm the leader of this view")
        if msg.batch_start > msg.opnum:
            raise ValueError("prepare batch starts after its last operation")
        if msg.opnum - msg.batch_start + 1 != len(msg.requests):
            raise ValueError("prepare batch size does not match its operation range")

        self.view_change_timeout.reset()

        if msg.opnum <= self.last_op:
            self._send_prepare_ok(msg.view, msg.opnum)
            return

        if msg.batch_start > self.last_op + 1:
            self._request_state_transfer()
            self.pending_prepares.append((remote, msg))
            return

        for opnum, req in enumerate(msg.requests, start=msg.batch_start):
            if opnum <= self.last_op:
                continue
            self.last_op += 1
            self.log.append(Viewstamp(msg.view, opnum), req, LogEntryState.PREPARED)
            self._update_client_table(req)

        self._send_prepare_ok(msg.view, msg.opnum)

    def _handle_prepare_ok(self, remote: Any, msg: PrepareOKMessage) -> None:
        if self.status != ReplicaStatus.NORMAL or msg.view < self.view:
            return
        if msg.view > self.view:
            self._request_state_transfer()
            return
        if not self.am_leader():
            self._warn("Ignoring PREPAREOK because I'm not the leader")
            return

        vs = Viewstamp(msg.view, msg.opnum)
        quorum = self.prepare_ok_quorum.add_and_check_for_quorum(vs, msg.replica_idx, msg)
        if quorum is None:
            return
        # This may already be executed; commit_up_to then does nothing.
        self.commit_up_to(msg.opnum)
        if len(quorum) >= self.configuration.quorum_size():
            return
        commit = CommitMessage(view=self.view, opnum=self.last_committed)
        if not self.transport.send_message_to_all(self, commit):
            self._warn("Failed to send COMMIT message to all replicas")
        self.null_commit_timeout.reset()

    def _handle_commit(self, remote: Any, msg: CommitMessage) -> None:
        if self.status != ReplicaStatus.NORMAL or msg.view < self.view:
            return
        if msg.view > self.view:
            self._request_state_transfer()
            return
        if self.am_leader():
            raise self._error("Unexpected COMMIT: I'm the leader of this view")

        self.view_change_timeout.reset()

        if msg.opnum <= self.last_committed:
            return
        if msg.opnum > self.last_op:
            self._request_state_transfer()
            return
        self.commit_up_to(msg.opnum)