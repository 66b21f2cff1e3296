# vrstore

Building blocks for a replicated transactional key-value store: the
Viewstamped Replication protocol, a transaction model with optimistic
concurrency control, and the client-side pieces that sit on top of them.
Everything runs in memory. Messages travel through a `Transport` that you
supply.

## What is in the package

**Replication**

- `vrstore.viewstamp`: `Viewstamp(view, opnum)`, ordered by view and then
  by opnum, and `viewstamp_compare(a, b)`, which returns -1, 0 or 1.
- `vrstore.log`: `Log`, the operation log. Entries are numbered from
  `start`. If `use_hash` is set, each entry is SHA-1 chained onto the one
  before it (see `compute_hash`). It provides `append`, `find`, `set_status`,
  `set_request`, `remove_after`, `last`, `last_viewstamp`, `last_opnum`,
  `first_opnum`, `is_empty`, `last_hash`, `dump(start)` and
  `install(entries)`. `Request`, `LogEntry` and `LogEntryState` describe
  what the log holds.
- `vrstore.quorumset`: `QuorumSet(num_required)` keeps one message per
  replica under each key. `add_and_check_for_quorum` returns the messages
  once there are enough of them, and `None` otherwise.
- `vrstore.common`: the abstract `Transport`. It declares `register`,
  `send_message`, `send_message_to_replica`, `send_message_to_all`,
  `schedule` and `cancel`. The module also has:
  - `Timeout`, a repeating timer built on `Transport.schedule`.
  - `Configuration(n, f=None, addresses=())`, with `quorum_size()` and
    `leader_index(view)`.
  - `AppReplica`, whose `leader_upcall`, `replica_upcall` and
    `unlogged_upcall` you override to run operations.
  - The base classes `Client` and `Replica`.
  - The enums `ErrorCode` and `ReplicaStatus`.
- `vrstore.vrmessages`: the protocol messages as frozen dataclasses:
  `RequestMessage`, `UnloggedRequestMessage`, `ReplyMessage`,
  `UnloggedReplyMessage`, `PrepareMessage`, `PrepareOKMessage`,
  `CommitMessage`, `RequestStateTransferMessage`, `StateTransferMessage`,
  `StartViewChangeMessage`, `DoViewChangeMessage` and `StartViewMessage`.
- `vrstore.vrclient`: `VRClient`.
  - `invoke` sends a request to every replica and resends it every 10
    seconds until a reply arrives.
  - `invoke_unlogged` sends a request to one replica. If no reply comes
    within the timeout, it calls the error continuation with
    `ErrorCode.TIMEOUT`.
- `vrstore.vrnormal`: `NormalCaseReplica` handles client requests, prepares,
  prepare-OKs and commits. It keeps a client table of `ClientTableEntry`
  records.
- `vrstore.vrreplica`: `VRReplica` adds state transfer and view change
  (StartViewChange, DoViewChange and StartView) on top of the normal case.
  Pass every delivered message to `receive_message(remote, message)`.

**Transactions and storage**

- `vrstore.timestamp`: `Timestamp(timestamp, id)`, ordered by time and then
  by id. It has `is_valid()`, `to_message()` and `from_message()`.
- `vrstore.transaction`: `Transaction` holds read and write sets and has
  `add_read`, `add_write`, `to_message` and `from_message`. `ReplyStatus`
  lists the reply codes (`OK`, `FAIL`, `RETRY`, `ABSTAIN`, `TIMEOUT`,
  `NETWORK_FAILURE`).
- `vrstore.promise`: `Promise` is a one-shot, thread-safe reply slot.
  - `reply(...)` fills it.
  - `wait(timeout=None)` blocks until it is filled and returns a
    `PromiseResult`. It raises `TimeoutError` if the timeout passes first.
  - `VerifyStatus` gives the possible verification outcomes.
- `vrstore.kvstore`: `KVStore` keeps a stack of versions for each key. Use
  `get`, `put` and `remove`. `get` and `remove` raise `KeyError` when the
  key has no value.
- `vrstore.occstore`: `TxnStore` is the abstract store interface. `OCCStore`
  implements it with an in-memory multi-version store and these rules:
  - `prepare` fails a transaction that reads a key a prepared transaction
    writes, or writes a key a prepared transaction reads or writes.
  - `commit` applies the writes at the given timestamp.
  - `get(key)` returns the newest `(Timestamp, value)`.

**Client side**

- `vrstore.bufferclient`: `TxnClient` is the abstract single-shard client.
  `BufferClient` buffers a transaction's reads and writes on top of one,
  with `begin`, `get`, `put`, `get_n_versions`, `buffer_key`, `batch_get`,
  `get_range`, `prepare`, `commit`, `abort`, `verify` and `audit`. Operation
  timeouts and retry counts (`GET_TIMEOUT`, `PREPARE_TIMEOUT`,
  `COMMIT_RETRIES`, …) are module constants.
- `vrstore.sharding`: `key_to_shard(key, nshards)` picks a shard with the
  djb2 string hash.

**Utilities**

- `vrstore.truetime`: `TrueTime(skew=0, error_bound=0)` is a simulated
  clock.
  - It applies a random skew of up to `skew` microseconds.
  - `get_time()` returns `(seconds << 32) | microseconds`.
  - `get_time_and_error()` also returns the error bound.
- `vrstore.tracer`: `Tracer` records the latency of each stage of named
  requests, using `register`, `start`, `save`, `stop` and `flush`.

## Example

```python
from vrstore.log import Log, LogEntryState, Request
from vrstore.occstore import OCCStore
from vrstore.sharding import key_to_shard
from vrstore.timestamp import Timestamp
from vrstore.transaction import ReplyStatus, Transaction
from vrstore.viewstamp import Viewstamp

log = Log(use_hash=True)
log.append(Viewstamp(0, 1), Request(op=b"put x", clientid=7, clientreqid=1),
           LogEntryState.PREPARED)
assert log.last_opnum() == 1

store = OCCStore()
txn = Transaction()
txn.add_write("x", "1")
assert store.prepare(1, txn) == ReplyStatus.OK

other = Transaction()
other.add_read("x", Timestamp())
assert store.prepare(2, other) == ReplyStatus.FAIL

store.commit(1, 10)
assert store.get("x") == (Timestamp(10), "1")

shard = key_to_shard("x", 4)
assert 0 <= shard < 4
```

To run `VRClient` and `VRReplica`, subclass `Transport`. Deliver each
message by calling the receiver's `receive_message(remote, message)`, and
run timers through `schedule` and `cancel`.

## What the package does not do

- It has no network transport. `Transport` is abstract, so delivery, timers
  and addressing are up to you.
- It has no concrete `TxnClient`. There is no shard client that turns
  `BufferClient` calls into replicated requests, and no multi-shard
  transaction coordinator.
- Storage is in memory only. `OCCStore` keeps no ledger, digests or proofs,
  and nothing is written to disk.
- It provides no server program or command-line tool.

## Tests

```
pip install .[test]
pytest
```