"""Fundamental identifiers, votes, commands and batches."""

from __future__ import annotations

import enum
import json
import time
import zlib
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID, uuid4

from rabia.errors import SerializationError

__all__ = [
    "NodeId",
    "ConsensusState",
    "PhaseId",
    "BatchId",
    "StateValue",
    "Command",
    "CommandBatch",
]

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1
_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True, order=True)
class NodeId:
    """Unique identifier of a node in the cluster."""

    uuid: UUID

    @classmethod
    def generate(cls) -> NodeId:
        """Return a new random node identifier."""
        return cls(uuid4())

    @classmethod
    def from_u32(cls, value: int) -> NodeId:
        """Return a deterministic identifier built from a 32-bit unsigned number."""
        if not 0 <= value <= _U32_MAX:
            raise ValueError(f"value {value} is out of range for u32")
        return cls(UUID(bytes=value.to_bytes(4, "big") * 4))

    @classmethod
    def from_u64(cls, value: int) -> NodeId:
        """Return a deterministic identifier built from a 64-bit unsigned number."""
        if not 0 <= value <= _U64_MAX:
            raise ValueError(f"value {value} is out of range for u64")
        return cls(UUID(bytes=value.to_bytes(8, "big") * 2))

    @classmethod
    def from_i32(cls, value: int) -> NodeId:
        """Return a deterministic identifier built from a 32-bit signed number."""
        if not _I32_MIN <= value <= _I32_MAX:
            raise ValueError(f"value {value} is out of range for i32")
        return cls.from_u32(value & _U32_MAX)

    def __str__(self) -> str:
        return str(self.uuid)


class ConsensusState(enum.Enum):
    """Whether a node currently takes part in consensus."""

    ACTIVE = "Active"
    IDLE = "Idle"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, order=True)
class PhaseId:
    """Monotonically increasing identifier of a consensus phase."""

    number: int

    def __post_init__(self) -> None:
        if not isinstance(self.number, int) or isinstance(self.number, bool):
            raise TypeError("phase number must be an integer")
        if not 0 <= self.number <= _U64_MAX:
            raise ValueError(f"phase number {self.number} is out of range")

    def next(self) -> PhaseId:
        """Return the following phase."""
        return PhaseId(self.number + 1)

    def value(self) -> int:
        """Return the numeric phase value."""
        return self.number

    def __str__(self) -> str:
        return str(self.number)


@dataclass(frozen=True)
class BatchId:
    """Unique identifier of a command batch."""

    uuid: UUID

    @classmethod
    def generate(cls) -> BatchId:
        """Return a new random batch identifier."""
        return cls(uuid4())

    def __str__(self) -> str:
        return str(self.uuid)


class StateValue(enum.Enum):
    """A vote value in the protocol."""

    V0 = "V0"
    V1 = "V1"
    VQUESTION = "VQuestion"

    def __str__(self) -> str:
        return "V?" if self is StateValue.VQUESTION else self.value


def _to_bytes(data: str | bytes | bytearray | memoryview) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise TypeError(f"command data must be str or bytes, not {type(data).__name__}")


@dataclass
class Command:
    """A single operation for the replicated state machine."""

    id: UUID
    data: bytes

    @classmethod
    def create(cls, data: str | bytes | bytearray | memoryview) -> Command:
        """Return a command with a fresh random id carrying the given data."""
        return cls(uuid4(), _to_bytes(data))

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible representation."""
        return {"id": str(self.id), "data": list(self.data)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Command:
        """Rebuild a command from the output of to_dict."""
        try:
            return cls(UUID(data["id"]), bytes(data["data"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise SerializationError(f"invalid command: {exc}") from exc


@dataclass
class CommandBatch:
    """A group of commands decided on together."""

    id: BatchId
    commands: list[Command] = field(default_factory=list)
    timestamp: int = 0

    @classmethod
    def create(cls, commands: list[Command]) -> CommandBatch:
        """Return a batch with a fresh id stamped with the current time."""
        return cls(BatchId.generate(), list(commands), _now_millis())

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible representation."""
        return {
            "id": str(self.id),
            "commands": [command.to_dict() for command in self.commands],
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CommandBatch:
        """Rebuild a batch from the output of to_dict."""
        try:
            batch_id = BatchId(UUID(data["id"]))
            commands = [Command.from_dict(item) for item in data["commands"]]
            timestamp = data["timestamp"]
        except (KeyError, TypeError, ValueError) as exc:
            raise SerializationError(f"invalid command batch: {exc}") from exc
        if not isinstance(timestamp, int) or isinstance(timestamp, bool) or timestamp < 0:
            raise SerializationError(f"invalid batch timestamp: {timestamp!r}")
        return cls(batch_id, commands, timestamp)

    def checksum(self) -> int:
        """Return a CRC-32 of the batch's JSON encoding."""
        encoded = json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")
        return zlib.crc32(encoded)