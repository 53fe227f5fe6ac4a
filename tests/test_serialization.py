import json

import pytest

from rabia.errors import SerializationError
from rabia.messages import (
    DecisionMessage,
    HeartBeatMessage,
    NewBatchMessage,
    ProposeMessage,
    ProtocolMessage,
    QuorumNotificationMessage,
    SyncRequestMessage,
    SyncResponseMessage,
    VoteRound1Message,
    VoteRound2Message,
)
from rabia.serialization import (
    BinarySerializer,
    JsonSerializer,
    SerializationConfig,
    Serializer,
    create_serializer,
    estimate_message_size,
)
from rabia.types import BatchId, Command, CommandBatch, NodeId, PhaseId, StateValue


def make_message(payload, to=None):
    return ProtocolMessage.create(NodeId.generate(), to, payload)


def create_test_message():
    batch = CommandBatch.create(
        [
            Command.create("SET key1 value1"),
            Command.create("SET key2 value2"),
            Command.create("GET key1"),
        ]
    )
    proposal = ProposeMessage(PhaseId(1), BatchId.generate(), StateValue.V1, batch)
    return make_message(proposal, NodeId.generate())


def create_large_message():
    commands = [Command.create(f"SET key{i} value{i}") for i in range(100)]
    proposal = ProposeMessage(
        PhaseId(1), BatchId.generate(), StateValue.V1, CommandBatch.create(commands)
    )
    return make_message(proposal, NodeId.generate())


def test_json_serialization():
    serializer = Serializer.json()
    message = create_test_message()
    restored = serializer.deserialize(serializer.serialize(message), ProtocolMessage)
    assert restored.sender == message.sender
    assert restored.to == message.to
    assert restored == message


def test_binary_serialization():
    serializer = Serializer.binary()
    message = create_test_message()
    restored = serializer.deserialize(serializer.serialize(message), ProtocolMessage)
    assert restored.sender == message.sender
    assert restored.to == message.to
    assert restored == message


def test_binary_vs_json_size():
    message = create_test_message()
    json_bytes = Serializer.json().serialize(message)
    binary_bytes = Serializer.binary().serialize(message)
    assert len(binary_bytes) < len(json_bytes)


def test_serializer_factory_defaults_to_binary():
    serializer = create_serializer(SerializationConfig())
    message = create_test_message()
    restored = serializer.deserialize(serializer.serialize(message), ProtocolMessage)
    assert restored.sender == message.sender
    assert serializer.serialize(message) == Serializer.binary().serialize(message)


def test_serializer_factory_json():
    serializer = create_serializer(SerializationConfig(use_binary=False))
    message = create_test_message()
    assert serializer.serialize(message) == Serializer.json().serialize(message)


def test_default_serializer_is_binary():
    message = create_test_message()
    assert Serializer().serialize(message) == BinarySerializer().serialize(message)


def test_protocol_message_convenience_methods():
    serializer = Serializer.binary()
    message = create_test_message()
    restored = serializer.deserialize_message(serializer.serialize_message(message))
    assert restored.sender == message.sender
    assert restored.to == message.to


def test_pooled_serialization():
    serializer = Serializer.binary()
    message = create_test_message()
    with serializer.serialize_message_pooled(message) as pooled:
        regular = serializer.serialize_message(message)
        assert pooled.as_bytes() == regular
        restored = serializer.deserialize_message(pooled.as_bytes())
    assert restored.sender == message.sender


@pytest.mark.parametrize("serializer", [Serializer.json(), Serializer.binary()])
def test_large_message_roundtrip(serializer):
    message = create_large_message()
    restored = serializer.deserialize_message(serializer.serialize_message(message))
    assert restored == message
    assert len(restored.payload.batch.commands) == 100


def test_large_message_sizes():
    message = create_large_message()
    json_size = len(Serializer.json().serialize(message))
    binary_size = len(Serializer.binary().serialize(message))
    assert binary_size < json_size


def test_json_output_is_tagged_json():
    message = create_test_message()
    document = json.loads(JsonSerializer().serialize(message))
    assert list(document["message_type"]) == ["Propose"]
    assert document["from"] == str(message.sender)


def test_plain_values_roundtrip():
    value = {"a": [1, 2, 3], "b": "text"}
    for serializer in (Serializer.json(), Serializer.binary()):
        assert serializer.deserialize(serializer.serialize(value)) == value
        assert serializer.deserialize(serializer.serialize(value), dict) == value


def test_command_roundtrip():
    command = Command.create("SET test_key test_value")
    serializer = Serializer.binary()
    assert serializer.deserialize(serializer.serialize(command), Command) == command


def test_wrong_kind_is_rejected():
    serializer = Serializer.json()
    with pytest.raises(SerializationError):
        serializer.deserialize(serializer.serialize([1, 2]), dict)


def test_invalid_json_is_rejected():
    with pytest.raises(SerializationError):
        Serializer.json().deserialize_message(b"not json")


def test_truncated_binary_is_rejected():
    data = Serializer.binary().serialize_message(create_test_message())
    with pytest.raises(SerializationError):
        Serializer.binary().deserialize_message(data[:10])


def test_message_from_wrong_document_is_rejected():
    serializer = Serializer.binary()
    with pytest.raises(SerializationError):
        serializer.deserialize_message(serializer.serialize({"id": "x"}))


@pytest.mark.parametrize("serializer", [Serializer.json(), Serializer.binary()])
def test_unserializable_value_is_rejected(serializer):
    with pytest.raises(SerializationError):
        serializer.serialize(object())


def test_estimate_heartbeat():
    message = make_message(HeartBeatMessage(PhaseId(1), PhaseId(0), True))
    assert estimate_message_size(message) == 152


def test_estimate_propose_with_batch():
    assert estimate_message_size(create_test_message()) == 384


def test_estimate_decision_without_batch():
    message = make_message(DecisionMessage(PhaseId(1), BatchId.generate(), StateValue.V0))
    assert estimate_message_size(message) == 192


def test_estimate_votes():
    voter = NodeId.generate()
    round1 = make_message(VoteRound1Message(PhaseId(1), BatchId.generate(), StateValue.V1, voter))
    votes = {NodeId.generate(): StateValue.V1, NodeId.generate(): StateValue.V0}
    round2 = make_message(
        VoteRound2Message(PhaseId(1), BatchId.generate(), StateValue.V1, voter, votes)
    )
    assert estimate_message_size(round1) == 160
    assert estimate_message_size(round2) == 192


def test_estimate_sync_messages():
    request = make_message(SyncRequestMessage(PhaseId(3), 7))
    batch = CommandBatch.create([Command.create("GET a")])
    response = make_message(
        SyncResponseMessage(
            PhaseId(3),
            7,
            None,
            [(batch.id, batch)],
            [
                (PhaseId(1), BatchId.generate(), StateValue.V1),
                (PhaseId(2), BatchId.generate(), StateValue.V0),
            ],
        )
    )
    assert estimate_message_size(request) == 144
    assert estimate_message_size(response) == 288


def test_estimate_new_batch_and_quorum():
    batch = CommandBatch.create([Command.create("SET a 1"), Command.create("SET b 2")])
    new_batch = make_message(NewBatchMessage(batch, NodeId.generate()))
    nodes = [NodeId.generate() for _ in range(3)]
    quorum = make_message(QuorumNotificationMessage(True, nodes))
    assert estimate_message_size(new_batch) == 288
    assert estimate_message_size(quorum) == 192