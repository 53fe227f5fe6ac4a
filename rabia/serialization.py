"""JSON and binary encodings for protocol messages and other values."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import msgpack

from rabia.errors import SerializationError
from rabia.memory_pool import PooledBuffer, get_pooled_buffer
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

__all__ = [
    "MessageSerializer",
    "JsonSerializer",
    "BinarySerializer",
    "Serializer",
    "SerializationConfig",
    "create_serializer",
    "estimate_message_size",
]


def _to_plain(data: Any) -> Any:
    to_dict = getattr(data, "to_dict", None)
    return to_dict() if callable(to_dict) else data


def _from_plain(plain: Any, kind: type | None) -> Any:
    if kind is None:
        return plain
    from_dict = getattr(kind, "from_dict", None)
    if callable(from_dict):
        try:
            return from_dict(plain)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise SerializationError(f"invalid {kind.__name__}: {exc}") from exc
    if isinstance(plain, kind):
        return plain
    raise SerializationError(f"expected {kind.__name__}, got {type(plain).__name__}")


class MessageSerializer(ABC):
    """Turns values into bytes and back."""

    @abstractmethod
    def serialize(self, data: Any) -> bytes:
        """Encode a value; objects with to_dict are encoded through it."""

    @abstractmethod
    def deserialize(self, data: bytes, kind: type | None = None) -> Any:
        """Decode bytes, rebuilding kind through its from_dict when given."""


class JsonSerializer(MessageSerializer):
    """Compact UTF-8 JSON encoding."""

    def serialize(self, data: Any) -> bytes:
        try:
            text = json.dumps(_to_plain(data), separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"JSON serialization failed: {exc}") from exc
        return text.encode("utf-8")

    def deserialize(self, data: bytes, kind: type | None = None) -> Any:
        try:
            plain = json.loads(bytes(data))
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"JSON deserialization failed: {exc}") from exc
        return _from_plain(plain, kind)


class BinarySerializer(MessageSerializer):
    """MessagePack encoding, smaller and faster than JSON."""

    def serialize(self, data: Any) -> bytes:
        try:
            return msgpack.packb(_to_plain(data), use_bin_type=True)
        except (TypeError, ValueError, OverflowError) as exc:
            raise SerializationError(f"Binary serialization failed: {exc}") from exc

    def deserialize(self, data: bytes, kind: type | None = None) -> Any:
        try:
            plain = msgpack.unpackb(bytes(data), raw=False)
        except (TypeError, ValueError, msgpack.exceptions.UnpackException) as exc:
            raise SerializationError(f"Binary deserialization failed: {exc}") from exc
        return _from_plain(plain, kind)


class Serializer(MessageSerializer):
    """A serializer choosing JSON or binary encoding; binary by default."""

    def __init__(self, backend: MessageSerializer | None = None) -> None:
        self.backend = backend if backend is not None else BinarySerializer()

    @classmethod
    def json(cls) -> Serializer:
        """Return a JSON serializer."""
        return cls(JsonSerializer())

    @classmethod
    def binary(cls) -> Serializer:
        """Return a binary serializer."""
        return cls(BinarySerializer())

    def serialize(self, data: Any) -> bytes:
        return self.backend.serialize(data)

    def deserialize(self, data: bytes, kind: type | None = None) -> Any:
        return self.backend.deserialize(data, kind)

    def serialize_message(self, message: ProtocolMessage) -> bytes:
        """Encode a protocol message."""
        return self.serialize(message)

    def deserialize_message(self, data: bytes) -> ProtocolMessage:
        """Decode a protocol message."""
        return self.deserialize(data, ProtocolMessage)

    def serialize_message_pooled(self, message: ProtocolMessage) -> PooledBuffer:
        """Encode a protocol message into a buffer from the thread's pool."""
        encoded = self.serialize_message(message)
        buffer = get_pooled_buffer(estimate_message_size(message))
        buffer.extend(encoded)
        return buffer


@dataclass(frozen=True)
class SerializationConfig:
    """Choice of encoding."""

    use_binary: bool = True
    compression_threshold: int = 1024


def create_serializer(config: SerializationConfig | None = None) -> Serializer:
    """Return the serializer the configuration asks for."""
    config = config if config is not None else SerializationConfig()
    return Serializer.binary() if config.use_binary else Serializer.json()


_BASE_SIZE = 128
_COMMAND_SIZE = 64


def estimate_message_size(message: ProtocolMessage) -> int:
    """Return a rough size in bytes of the encoded message, for buffer sizing."""
    payload = message.payload
    match payload:
        case ProposeMessage() | DecisionMessage():
            commands = 0 if payload.batch is None else len(payload.batch.commands)
            size = 64 + commands * _COMMAND_SIZE
        case VoteRound1Message():
            size = 32
        case VoteRound2Message():
            size = 32 + len(payload.round1_votes) * 16
        case SyncRequestMessage():
            size = 16
        case SyncResponseMessage():
            size = (
                64
                + len(payload.pending_batches) * _COMMAND_SIZE
                + len(payload.committed_phases) * 16
            )
        case NewBatchMessage():
            size = 32 + len(payload.batch.commands) * _COMMAND_SIZE
        case HeartBeatMessage():
            size = 24
        case QuorumNotificationMessage():
            size = 16 + len(payload.active_nodes) * 16
        case _:
            raise TypeError(f"unsupported message payload: {type(payload).__name__}")
    return _BASE_SIZE + size