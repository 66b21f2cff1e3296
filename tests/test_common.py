import pytest

from vrstore.common import (
    AppReplica,
    Client,
    Configuration,
    Replica,
    ReplicaStatus,
    Timeout,
    Transport,
)
from vrstore.log import Request


class FakeTransport(Transport):
    def __init__(self):
        self.now = 0
        self.timers = {}
        self.next_handle = 0
        self.registered = []
        self.sent = []

    def register(self, receiver, config, replica_idx):
        self.registered.append((receiver, config, replica_idx))

    def send_message(self, src, dst, message):
        self.sent.append(message)
        return True

    def send_message_to_replica(self, src, replica_idx, message):
        self.sent.append(message)
        return True

    def send_message_to_all(self, src, message):
        self.sent.append(message)
        return True

    def schedule(self, delay_ms, callback):
        self.next_handle += 1
        self.timers[self.next_handle] = (self.now + delay_ms, callback)
        return self.next_handle

    def cancel(self, handle):
        self.timers.pop(handle, None)

    def advance(self, ms):
        target = self.now + ms
        while True:
            due = sorted((t, h) for h, (t, _) in self.timers.items() if t <= target)
            if not due:
                break
            when, handle = due[0]
            self.now = when
            _, callback = self.timers.pop(handle)
            callback()
        self.now = target


class PlainClient(Client):
    def invoke(self, request, continuation, error_continuation=None):
        continuation(request, request)

    def invoke_unlogged(self, replica_idx, request, continuation,
                        error_continuation=None, timeout=Client.DEFAULT_UNLOGGED_OP_TIMEOUT):
        continuation(request, request)


class RecordingApp(AppReplica):
    def __init__(self):
        self.calls = []

    def replica_upcall(self, opnum, op):
        self.calls.append((opnum, op))
        return f"done:{op}"

    def unlogged_upcall(self, op):
        return f"read:{op}"


class PlainReplica(Replica):
    def receive_message(self, remote, message):
        self.last = message


def test_configuration_leader_rotates():
    config = Configuration(5)
    leaders = [config.leader_index(view) for view in range(10)]
    assert sorted(set(leaders)) == list(range(5))
    assert all(config.leader_index(v) == config.leader_index(v + 5) for v in range(10))


def test_configuration_rejects_too_many_failures():
    with pytest.raises(ValueError):
        Configuration(3, f=2)
    with pytest.raises(ValueError):
        Configuration(0)


def test_configuration_address_count_must_match():
    with pytest.raises(ValueError):
        Configuration(3, addresses=("a", "b"))
    assert Configuration(2, addresses=["a", "b"]).addresses == ("a", "b")


def test_app_replica_defaults():
    app = AppReplica()
    assert app.leader_upcall(5, "op") == (True, "op")
    assert app.replica_upcall(5, "op") == ""
    assert app.unlogged_upcall("op") == ""


def test_client_keeps_given_id_and_registers():
    transport = FakeTransport()
    config = Configuration(3)
    client = PlainClient(config, transport, clientid=42)
    assert client.clientid == 42
    assert transport.registered == [(client, config, -1)]


def test_client_generates_nonzero_id():
    client = PlainClient(Configuration(3), FakeTransport())
    assert 0 < client.clientid < 2**64


def test_client_rejects_out_of_range_id():
    with pytest.raises(ValueError):
        PlainClient(Configuration(3), FakeTransport(), clientid=-1)
    with pytest.raises(ValueError):
        PlainClient(Configuration(3), FakeTransport(), clientid=2**64)


def test_client_rejects_unknown_message():
    client = PlainClient(Configuration(3), FakeTransport(), clientid=1)
    with pytest.raises(TypeError):
        client.receive_message("addr", object())


def test_replica_forwards_to_app():
    transport = FakeTransport()
    app = RecordingApp()
    replica = PlainReplica(Configuration(3), 2, transport, app)
    assert transport.registered[0][2] == 2
    assert replica.status is ReplicaStatus.NORMAL
    assert replica.execute(7, Request(op="put", clientid=1, clientreqid=1)) == "done:put"
    assert app.calls == [(7, "put")]
    assert replica.execute_unlogged(Request(op="get")) == "read:get"
    assert replica.leader_upcall(1, "x") == (True, "x")


def test_timeout_fires_repeatedly_until_stopped():
    transport = FakeTransport()
    fired = []
    timer = Timeout(transport, 100, lambda: fired.append(transport.now))
    timer.start()
    transport.advance(250)
    assert fired == [100, 200]
    timer.stop()
    assert not timer.active
    transport.advance(1000)
    assert fired == [100, 200]


def test_timeout_reset_postpones_firing():
    transport = FakeTransport()
    fired = []
    timer = Timeout(transport, 100, lambda: fired.append(transport.now))
    timer.start()
    transport.advance(60)
    timer.reset()
    transport.advance(60)
    assert fired == []
    transport.advance(40)
    assert fired == [160]