"""A complete Viewstamped Replication replica: normal case, state transfer and view change."""

from __future__ import annotations

import logging
from typing import Any, Callable

from vrstore.common import ReplicaStatus
from vrstore.log import LogEntryState
from vrstore.viewstamp import Viewstamp
from vrstore.vrmessages import (
    DoViewChangeMessage,
    RequestStateTransferMessage,
    StartViewChangeMessage,
    StartViewMessage,
    StateTransferMessage,
)
from vrstore.vrnormal import NormalCaseReplica

__all__ = ["VRReplica"]

_log = logging.getLogger(__name__)


class VRReplica(NormalCaseReplica):
    """A VR replica that also catches up by state transfer and changes views."""

    def _message_handlers(self) -> dict[type, Callable[[Any, Any], None]]:
        handlers = super()._message_handlers()
        handlers.update(
            {
                RequestStateTransferMessage: self._handle_request_state_transfer,
                StateTransferMessage: self._handle_state_transfer,
                StartViewChangeMessage: self._handle_start_view_change,
                DoViewChangeMessage: self._handle_do_view_change,
                StartViewMessage: self._handle_start_view,
            }
        )
        return handlers

    def receive_message(self, remote: Any, message: Any) -> None:
        """Dispatch ``message`` from ``remote`` to its handler."""
        super().receive_message(remote, message)

    # -- state transfer --------------------------------------------------

    def _handle_request_state_transfer(
        self, remote: Any, msg: RequestStateTransferMessage
    ) -> None:
        if self.status != ReplicaStatus.NORMAL:
            return
        if msg.view > self.view:
            self._request_state_transfer()
            return
        reply = StateTransferMessage(
            view=self.view,
            opnum=self.last_committed,
            entries=self.log.dump(msg.opnum + 1),
        )
        self.transport.send_message(self, remote, reply)

    def _handle_state_transfer(self, remote: Any, msg: StateTransferMessage) -> None:
        if msg.view < self.view:
            self._warn("Ignoring state transfer for older view")
            return

        old_last_op = self.last_op
        for new in msg.entries:
            opnum = new.viewstamp.opnum
            if opnum <= self.last_committed:
                continue
            if opnum <= self.last_op:
                entry = self.log.find(opnum)
                if entry is None or entry.viewstamp.view > new.viewstamp.view:
                    raise self._error(f"state transfer conflicts with operation {opnum}")
                if entry.viewstamp.view == new.viewstamp.view:
                    if entry.state != LogEntryState.PREPARED:
                        raise self._error(f"operation {opnum} is not in the prepared state")
                    continue
                # Our entry is from an older view and did not survive it.
                if entry.state == LogEntryState.COMMITTED:
                    raise self._error(f"cannot replace committed operation {opnum}")
                self.log.remove_after(opnum)
                self.last_op = opnum
                old_last_op = self.last_op
                self.log.append(Viewstamp(new.viewstamp.view, opnum), new.request,
                                LogEntryState.PREPARED)
            else:
                if opnum != self.last_op + 1:
                    raise self._error(
                        f"state transfer skips from {self.last_op} to {opnum}"
                    )
                self.last_op += 1
                self.log.append(Viewstamp(new.viewstamp.view, opnum), new.request,
                                LogEntryState.PREPARED)

        if msg.view > self.view:
            self._enter_view(msg.view)

        if msg.opnum > self.last_op:
            raise self._error(f"cannot commit {msg.opnum} beyond last operation {self.last_op}")
        self.commit_up_to(msg.opnum)
        self._send_prepare_oks(old_last_op)

        # Prepares buffered while waiting are dropped; the leader resends them.
        self.pending_prepares.clear()

    # -- view change -----------------------------------------------------

    def _handle_start_view_change(self, remote: Any, msg: StartViewChangeMessage) -> None:
        if msg.view < self.view:
            return
        if msg.view == self.view and self.status != ReplicaStatus.VIEW_CHANGE:
            return
        if self.status != ReplicaStatus.VIEW_CHANGE or msg.view > self.view:
            self._start_view_change(msg.view)

        quorum = self.start_view_change_quorum.add_and_check_for_quorum(
            msg.view, msg.replica_idx, msg
        )
        if quorum is None:
            return
        leader = self._leader_index()
        # Never send a DoViewChange to ourselves.
        if leader == self.my_idx:
            return
        min_committed = min(
            [m.last_committed for m in quorum.values()] + [self.last_committed]
        )
        dvc = DoViewChangeMessage(
            view=self.view,
            last_normal_view=self.log.last_viewstamp().view,
            last_op=self.last_op,
            last_committed=self.last_committed,
            replica_idx=self.my_idx,
            entries=self.log.dump(min_committed),
        )
        if not self.transport.send_message_to_replica(self, leader, dvc):
            self._warn("Failed to send DoViewChange message to leader of new view")

    def _handle_do_view_change(self, remote: Any, msg: DoViewChangeMessage) -> None:
        if msg.view < self.view:
            return
        if msg.view == self.view and self.status != ReplicaStatus.VIEW_CHANGE:
            return
        if self.status != ReplicaStatus.VIEW_CHANGE or msg.view > self.view:
            self._start_view_change(msg.view)

        if self.configuration.leader_index(msg.view) != self.my_idx:
            raise self._error(f"received DoViewChange for view {msg.view} I do not lead")

        quorum = self.do_view_change_quorum.add_and_check_for_quorum(
            msg.view, msg.replica_idx, msg
        )
        if quorum is None:
            return

        # Pick the most up-to-date log: the one with the latest viewstamp.
        latest = self.log.last_viewstamp()
        latest_view, latest_op = latest.view, latest.opnum
        latest_msg: DoViewChangeMessage | None = None
        for candidate in quorum.values():
            if candidate.last_normal_view > latest_view or (
                candidate.last_normal_view == latest_view and candidate.last_op > latest_op
            ):
                latest_view = candidate.last_normal_view
                latest_op = candidate.last_op
                latest_msg = candidate

        if latest_msg is not None:
            if not latest_msg.entries:
                if (
                    self.last_committed != msg.last_committed
                    or msg.last_op != msg.last_committed
                ):
                    raise self._error("empty log received with uncommitted operations")
            else:
                if latest_msg.entries[0].viewstamp.opnum > self.last_committed + 1:
                    raise self._error(
                        "Received log that didn't include enough entries to install it"
                    )
                self.log.remove_after(latest_msg.last_op + 1)
                self.log.install(latest_msg.entries)

        # Computed before entering the view, which forgets the saved messages.
        svcs = self.start_view_change_quorum.get_messages(self.view)
        min_committed = min(
            [m.last_committed for m in svcs.values()]
            + [m.last_committed for m in quorum.values()]
            + [self.last_committed]
        )

        self._enter_view(msg.view)
        if not self.am_leader():
            raise self._error("not the leader of the view just entered")

        self.last_op = latest_op
        if latest_msg is not None:
            self.commit_up_to(latest_msg.last_committed)

        start_view = StartViewMessage(
            view=self.view,
            last_op=self.last_op,
            last_committed=self.last_committed,
            entries=self.log.dump(min_committed),
        )
        if not self.transport.send_message_to_all(self, start_view):
            self._warn("Failed to send StartView message to all replicas")

    def _handle_start_view(self, remote: Any, msg: StartViewMessage) -> None:
        if msg.view < self.view:
            self._warn("Ignoring STARTVIEW for older view")
            return
        if msg.view == self.view and self.status != ReplicaStatus.VIEW_CHANGE:
            self._warn("Ignoring STARTVIEW for current view")
            return
        if self.configuration.leader_index(msg.view) == self.my_idx:
            raise self._error(f"received STARTVIEW for view {msg.view} that I lead")

        if not msg.entries:
            if msg.last_committed != self.last_committed or msg.last_op != msg.last_committed:
                raise self._error("empty STARTVIEW log with uncommitted operations")
        else:
            if msg.entries[0].viewstamp.opnum > self.last_committed + 1:
                raise self._error("Not enough entries in STARTVIEW message to install new log")
            self.log.remove_after(msg.last_op + 1)
            self.log.install(msg.entries)

        self._enter_view(msg.view)
        old_last_op = self.last_op
        self.last_op = msg.last_op

        if self.am_leader():
            raise self._error("became leader on STARTVIEW")

        self.commit_up_to(msg.last_committed)
        self._send_prepare_oks(old_last_op)