# rabia

Building blocks for nodes that run the Rabia consensus protocol for state
machine replication. The package gives you identifiers, commands, protocol
messages, validation, quorum tracking, serialization, buffer pools, command
batching, and interfaces for state machines, transports and storage.

## Installation

```
pip install rabia
```

MessagePack (`msgpack`) is the only runtime dependency.

## Modules

- `rabia.types` holds the identifiers and data types:
  - `NodeId`: build one with `NodeId.generate()`, or build a fixed one with `from_u32`, `from_u64` or `from_i32`.
  - `PhaseId`: ordered, with `next()` and `value()`.
  - `BatchId`.
  - `StateValue`: the vote values `V0`, `V1` and `VQUESTION`. `VQUESTION` prints as `V?`.
  - `ConsensusState`.
  - `Command`: build one with `Command.create(data)`, where data is a str or bytes.
  - `CommandBatch`: build one with `CommandBatch.create(commands)`. Its `checksum()` is a CRC-32 of its compact JSON form.

  `Command` and `CommandBatch` convert to and from plain data with `to_dict` / `from_dict`.
- `rabia.errors` defines the `RabiaError` hierarchy:
  - `NetworkError`, `PersistenceError`, `StateMachineError` and `ConsensusError`.
  - `NodeNotFoundError`, `PhaseNotFoundError` and `BatchNotFoundError`.
  - `InvalidStateTransitionError` and `QuorumNotAvailableError`.
  - `ChecksumMismatchError`, `StateCorruptionError` and `PartialWriteError`.
  - `RabiaTimeoutError`, `RabiaIOError`, `InternalError` and `SerializationError`.

  `is_retryable()` is true only for `NetworkError`, `RabiaTimeoutError` and `QuorumNotAvailableError`.
- `rabia.messages` defines `ProtocolMessage`. A message has an `id`, a `sender`, a `to` (which is `None` for a broadcast), a millisecond `timestamp` and a `payload`. The payload is one of:
  - `ProposeMessage`, `VoteRound1Message`, `VoteRound2Message` or `DecisionMessage`;
  - `SyncRequestMessage` or `SyncResponseMessage`;
  - `NewBatchMessage`, `HeartBeatMessage` or `QuorumNotificationMessage`.

  `ProtocolMessage.create` builds a message, and so do the shortcuts `propose`, `vote_round1`, `vote_round2`, `decision`, `sync_request`, `sync_response` and `new_batch`. The module also holds two bookkeeping classes:
  - `PhaseData` collects first- and second-round votes. `has_round1_majority(quorum_size)` and `has_round2_majority(quorum_size)` return the value that reached the quorum, checking in the order `V0`, `V1`, `V?`. `set_decision` commits the phase for any value other than `V?`.
  - `PendingBatch` tracks retries and age.
- `rabia.validation` offers `validate(target)`, which accepts a `ProtocolMessage` or a `CommandBatch`, and the more specific `validate_message` and `validate_batch`. Each returns its argument unchanged or raises an error.
  - Batches must hold 1 to 1000 commands. Each command must hold 1 byte to 1 MiB of data.
  - Messages must be no more than 60 s in the future and no more than 600 s old.
  - In a heartbeat, the committed phase must not be ahead of the current phase.
  - A round-2 vote must carry round-1 votes.

  `validate_message_sequence(previous, current)` requires the phase to move forward by at most 1000. The limits are listed in `ValidationConfig`.
- `rabia.network` provides:
  - `ClusterConfig`: the quorum size is `len(all_nodes) // 2 + 1`.
  - The abstract interfaces `NetworkTransport` and `NetworkEventHandler`.
  - `NetworkMonitor`: `update_connected_nodes(nodes)` returns a list of events. `NodeConnected` and `NodeDisconnected` events come first. `QuorumLost` or `QuorumRestored` follows when the quorum status changes. `NetworkPartition` comes last, whenever membership changed.
- `rabia.state_machine` provides:
  - `Snapshot`, a versioned payload checked with CRC-32.
  - An abstract byte-command `StateMachine`.
  - `InMemoryStateMachine`, a key-value store that answers `SET key value`, `GET key` and `DEL key`. Its replies are `OK`, the value, `NOT_FOUND` or `ERROR: ...`. It can take and restore snapshots. Restoring a snapshot whose checksum does not match raises `ChecksumMismatchError`.
- `rabia.smr` provides a generic, typed `StateMachine` interface with commands, responses and state.
- `rabia.persistence` provides:
  - `EngineState`, which stores the current phase, the last committed phase and an optional snapshot as compact JSON, through `to_bytes` / `from_bytes`.
  - The `PersistenceLayer` interface.
- `rabia.serialization` provides two encodings:
  - `JsonSerializer`, which writes compact JSON.
  - `BinarySerializer`, which writes MessagePack.

  `Serializer` wraps one of them and defaults to binary; build it with `Serializer.json()` or `Serializer.binary()`. Objects that have `to_dict` are encoded through it. `deserialize(data, kind)` rebuilds them through `kind.from_dict`. Messages also have their own methods:
  - `serialize_message` and `deserialize_message`.
  - `serialize_message_pooled`, which returns a `PooledBuffer`.

  `create_serializer(SerializationConfig(...))` picks the encoding. `estimate_message_size` gives a rough size for sizing buffers.
- `rabia.memory_pool` provides:
  - `MemoryPool`, which holds small (1 KiB), medium (8 KiB) and large (64 KiB or larger) `PooledBuffer`s.
    - A buffer goes back to its pool on `release()` or at the end of a `with` block.
    - It goes back only while its capacity has not changed.
  - `get_pooled_buffer`, which draws from a pre-warmed pool kept per thread.
  - `StringPool`, which hands out `PooledString` builders.
- `rabia.batching` provides:
  - `CommandBatcher`, which cuts a batch when the buffer reaches the batch size or when `max_batch_delay` seconds have passed since the last cut. It can adapt the batch size to the load, and it raises `InternalError` when the buffer is full.
  - `AsyncCommandBatcher`, which batches in a background asyncio task and also flushes on a timer. It is an async context manager.
  - `BatchProcessor`, which runs a coroutine over each command of a batch, one after another or concurrently.

## Example

```python
from rabia.types import BatchId, Command, CommandBatch, NodeId, PhaseId, StateValue
from rabia.messages import ProposeMessage, ProtocolMessage
from rabia.serialization import Serializer
from rabia.validation import validate

batch = CommandBatch.create([Command.create("SET key1 value1"), Command.create("GET key1")])
message = ProtocolMessage.propose(
    NodeId.generate(),
    ProposeMessage(phase_id=PhaseId(1), batch_id=BatchId.generate(),
                   value=StateValue.V1, batch=batch),
)
validate(message)

serializer = Serializer.binary()
data = serializer.serialize_message(message)
assert serializer.deserialize_message(data).sender == message.sender
```

### Batching commands

```python
from rabia.batching import BatchConfig, CommandBatcher
from rabia.types import Command

batcher = CommandBatcher(BatchConfig(max_batch_size=3, max_batch_delay=60.0, adaptive=False))
for i in range(7):
    batch = batcher.add_command(Command.create(f"SET key{i} value{i}"))
    if batch is not None:
        print(len(batch.commands))   # 3, then 3
leftover = batcher.flush()           # the last command
```

### Running a state machine

```python
import asyncio
from rabia.state_machine import InMemoryStateMachine
from rabia.types import Command

async def demo():
    sm = InMemoryStateMachine()
    await sm.apply_command(Command.create("SET key1 value1"))
    print(await sm.apply_command(Command.create("GET key1")))  # b'value1'

asyncio.run(demo())
```

## What this package does not do

This is a library of parts, not a running node.

- It has no consensus engine that drives the protocol's rounds.
- It has no network transport. `NetworkTransport` is only an interface.
- It has no storage backend. `PersistenceLayer` is only an interface.
- It has no command-line program.

You supply the transport, the storage and the code that drives the phases.

## Running the tests

```
pip install -e ".[test]"
pytest
```