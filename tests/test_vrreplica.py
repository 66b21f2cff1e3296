from __future__ import annotations

import itertools

import pytest

from vrstore.common import AppReplica, Configuration, ReplicaStatus, Transport
from vrstore.log import LogEntry, LogEntryState, Request
from vrstore.viewstamp import Viewstamp
from vrstore.vrmessages import (
    DoViewChangeMessage,
    PrepareMessage,
    PrepareOKMessage,
    RequestStateTransferMessage,
    StartViewChangeMessage,
    StartViewMessage,
    StateTransferMessage,
)
from vrstore.vrreplica import VRReplica


class FakeTransport(Transport):
    def __init__(self):
        self.sent = []
        self.timers = {}
        self._ids = itertools.count()

    def register(self, receiver, config, replica_idx):
        pass

    def send_message(self, src, dst, message):
        self.sent.append(("to", dst, message))
        return True

    def send_message_to_replica(self, src, replica_idx, message):
        self.sent.append(("replica", replica_idx, message))
        return True

    def send_message_to_all(self, src, message):
        self.sent.append(("all", None, message))
        return True

    def schedule(self, delay_ms, callback):
        handle = next(self._ids)
        self.timers[handle] = (delay_ms, callback)
        return handle

    def cancel(self, handle):
        self.timers.pop(handle, None)

    def of_type(self, kind):
        return [(how, dst, m) for how, dst, m in self.sent if isinstance(m, kind)]


def make(idx):
    transport = FakeTransport()
    replica = VRReplica(Configuration(3), idx, transport, 1, AppReplica())
    return replica, transport


def entry(view, opnum, reqid=None):
    return LogEntry(
        Viewstamp(view, opnum),
        LogEntryState.PREPARED,
        Request(op=f"op{opnum}", clientid=7, clientreqid=reqid or opnum),
    )


def test_unknown_message_raises():
    replica, _ = make(1)
    with pytest.raises(TypeError):
        replica.receive_message("remote", object())


def test_request_state_transfer_dumps_log():
    replica, transport = make(1)
    req = Request(op="a", clientid=7, clientreqid=1)
    replica.receive_message("leader", PrepareMessage(view=0, opnum=1, batch_start=1, requests=[req]))
    replica.receive_message("peer", RequestStateTransferMessage(view=0, opnum=0))
    replies = transport.of_type(StateTransferMessage)
    assert len(replies) == 1
    how, dst, msg = replies[0]
    assert dst == "peer"
    assert [e.viewstamp.opnum for e in msg.entries] == [1]
    assert msg.entries[0].request == req


def test_state_transfer_installs_and_commits():
    replica, transport = make(2)
    msg = StateTransferMessage(view=0, opnum=1, entries=(entry(0, 1), entry(0, 2)))
    replica.receive_message("peer", msg)
    assert replica.last_op == 2
    assert replica.last_committed == 1
    assert replica.log.find(1).state == LogEntryState.COMMITTED
    assert replica.log.find(2).state == LogEntryState.PREPARED
    oks = transport.of_type(PrepareOKMessage)
    assert [(dst, m.opnum) for _, dst, m in oks] == [(0, 2)]


def test_state_transfer_for_older_view_is_ignored():
    replica, _ = make(2)
    replica.receive_message("peer", StartViewChangeMessage(view=1, replica_idx=0))
    replica.receive_message("peer", StateTransferMessage(view=0, opnum=1, entries=(entry(0, 1),)))
    assert replica.log.is_empty()
    assert replica.view == 1


def test_state_transfer_for_newer_view_enters_it():
    replica, _ = make(2)
    replica.receive_message("peer", StateTransferMessage(view=1, opnum=0))
    assert replica.view == 1
    assert replica.status == ReplicaStatus.NORMAL
    assert not replica.am_leader()


def test_state_transfer_replaces_entries_from_older_view():
    replica, _ = make(2)
    replica.receive_message("peer", StateTransferMessage(view=0, opnum=0, entries=(entry(0, 1),)))
    replaced = LogEntry(Viewstamp(1, 1), LogEntryState.PREPARED,
                        Request(op="new", clientid=7, clientreqid=1))
    replica.receive_message("peer", StateTransferMessage(view=1, opnum=0, entries=(replaced,)))
    assert replica.log.find(1).viewstamp == Viewstamp(1, 1)
    assert replica.log.find(1).request.op == "new"


def test_pending_prepares_are_dropped_after_state_transfer():
    replica, transport = make(2)
    req = Request(op="a", clientid=7, clientreqid=1)
    replica.receive_message("leader", PrepareMessage(view=1, opnum=1, batch_start=1, requests=[req]))
    assert len(replica.pending_prepares) == 1
    assert len(transport.of_type(RequestStateTransferMessage)) == 1
    replica.receive_message("peer", StateTransferMessage(view=1, opnum=0))
    assert replica.pending_prepares == []


def test_start_view_change_sends_do_view_change_to_new_leader():
    replica, transport = make(2)
    replica.receive_message("peer", StartViewChangeMessage(view=1, replica_idx=0, last_committed=0))
    assert replica.view == 1
    assert replica.status == ReplicaStatus.VIEW_CHANGE
    own = transport.of_type(StartViewChangeMessage)
    assert own[0][2].replica_idx == 2
    dvcs = transport.of_type(DoViewChangeMessage)
    assert len(dvcs) == 1
    assert dvcs[0][1] == 1
    assert dvcs[0][2].view == 1
    assert dvcs[0][2].replica_idx == 2


def test_stale_start_view_change_is_ignored():
    replica, transport = make(2)
    replica.receive_message("peer", StateTransferMessage(view=2, opnum=0))
    transport.sent.clear()
    replica.receive_message("peer", StartViewChangeMessage(view=1, replica_idx=0))
    assert replica.view == 2
    assert transport.sent == []


def test_do_view_change_at_non_leader_raises():
    replica, _ = make(2)
    with pytest.raises(RuntimeError):
        replica.receive_message("peer", DoViewChangeMessage(view=1, replica_idx=0))


def test_do_view_change_quorum_starts_new_view():
    replica, transport = make(1)
    dvc = DoViewChangeMessage(
        view=1, last_normal_view=0, last_op=1, last_committed=0, replica_idx=0,
        entries=(entry(0, 1),),
    )
    replica.receive_message("peer", dvc)
    assert replica.view == 1
    assert replica.status == ReplicaStatus.NORMAL
    assert replica.am_leader()
    assert replica.last_op == 1
    assert replica.log.find(1).viewstamp == Viewstamp(0, 1)
    starts = transport.of_type(StartViewMessage)
    assert len(starts) == 1
    sv = starts[0][2]
    assert (sv.view, sv.last_op, sv.last_committed) == (1, 1, 0)
    assert [e.viewstamp.opnum for e in sv.entries] == [1]


def test_start_view_installs_log_and_commits():
    replica, _ = make(2)
    replica.receive_message(
        "leader", StartViewMessage(view=1, last_op=1, last_committed=1, entries=(entry(0, 1),))
    )
    assert replica.view == 1
    assert replica.status == ReplicaStatus.NORMAL
    assert replica.last_committed == 1
    assert replica.log.find(1).state == LogEntryState.COMMITTED


def test_start_view_at_its_leader_raises():
    replica, _ = make(1)
    with pytest.raises(RuntimeError):
        replica.receive_message("peer", StartViewMessage(view=1))


def test_start_view_with_missing_entries_raises():
    replica, _ = make(2)
    with pytest.raises(RuntimeError):
        replica.receive_message(
            "leader", StartViewMessage(view=1, last_op=3, last_committed=0, entries=(entry(0, 3),))
        )


def test_start_view_for_current_view_is_ignored():
    replica, _ = make(2)
    replica.receive_message("leader", StartViewMessage(view=0, last_op=1, entries=(entry(0, 1),)))
    assert replica.log.is_empty()


def test_view_change_timeout_starts_view_change():
    replica, transport = make(2)
    callbacks = [cb for delay, cb in transport.timers.values() if delay == 5000]
    assert len(callbacks) == 1
    callbacks[0]()
    assert replica.view == 1
    assert replica.status == ReplicaStatus.VIEW_CHANGE