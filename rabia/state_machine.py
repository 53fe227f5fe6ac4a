"""Command-driven state machines with checksummed snapshots."""

from __future__ import annotations

import json
import zlib
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from rabia.errors import ChecksumMismatchError, SerializationError
from rabia.types import Command

__all__ = ["Snapshot", "StateMachine", "InMemoryStateMachine"]

StateT = TypeVar("StateT")

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1


def _as_bytes(data: str | bytes | bytearray | memoryview) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise TypeError(f"snapshot data must be str or bytes, not {type(data).__name__}")


def _check_uint(value: Any, limit: int, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= limit:
        raise ValueError(f"invalid {name}: {value!r}")
    return value


@dataclass(frozen=True)
class Snapshot:
    """A versioned copy of state machine data with a CRC-32 checksum."""

    version: int
    data: bytes
    checksum: int

    @classmethod
    def create(cls, version: int, data: str | bytes | bytearray | memoryview) -> Snapshot:
        """Return a snapshot whose checksum is computed from the data."""
        payload = _as_bytes(data)
        return cls(version, payload, zlib.crc32(payload))

    def verify_checksum(self) -> bool:
        """Return True when the stored checksum matches the data."""
        return zlib.crc32(self.data) == self.checksum

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible representation."""
        return {"version": self.version, "data": list(self.data), "checksum": self.checksum}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        """Rebuild a snapshot from the output of to_dict."""
        try:
            version = _check_uint(data["version"], _U64_MAX, "snapshot version")
            checksum = _check_uint(data["checksum"], _U32_MAX, "snapshot checksum")
            payload = bytes(data["data"])
        except (KeyError, TypeError, ValueError) as exc:
            raise SerializationError(f"invalid snapshot: {exc}") from exc
        return cls(version, payload, checksum)


class StateMachine(ABC, Generic[StateT]):
    """A deterministic state machine driven by byte commands."""

    @abstractmethod
    async def apply_command(self, command: Command) -> bytes:
        """Apply one command and return its result."""

    async def apply_commands(self, commands: Iterable[Command]) -> list[bytes]:
        """Apply commands in order and return their results."""
        return [await self.apply_command(command) for command in commands]

    @abstractmethod
    async def create_snapshot(self) -> Snapshot:
        """Return a snapshot of the current state."""

    @abstractmethod
    async def restore_snapshot(self, snapshot: Snapshot) -> None:
        """Replace the current state with the snapshot's contents."""

    @abstractmethod
    async def get_state(self) -> StateT:
        """Return a copy of the current state."""

    def is_deterministic(self) -> bool:
        """Return True; replicated state machines must be deterministic."""
        return True


@dataclass
class InMemoryStateMachine(StateMachine[dict[str, bytes]]):
    """A key-value store understanding SET, GET and DEL commands."""

    state: dict[str, bytes] = field(default_factory=dict)
    version: int = 0

    async def apply_command(self, command: Command) -> bytes:
        parts = command.data.decode("utf-8", errors="replace").split()
        if not parts:
            return b"ERROR: Empty command"

        match parts:
            case ["SET", key, value]:
                self.state[key] = value.encode("utf-8")
                self.version += 1
                return b"OK"
            case ["GET", key]:
                return self.state.get(key, b"NOT_FOUND")
            case ["DEL", key]:
                if self.state.pop(key, None) is None:
                    return b"NOT_FOUND"
                self.version += 1
                return b"OK"
            case _:
                return b"ERROR: Invalid command"

    async def create_snapshot(self) -> Snapshot:
        encoded = json.dumps(
            {key: list(value) for key, value in self.state.items()},
            separators=(",", ":"),
        ).encode("utf-8")
        return Snapshot.create(self.version, encoded)

    async def restore_snapshot(self, snapshot: Snapshot) -> None:
        if not snapshot.verify_checksum():
            raise ChecksumMismatchError(snapshot.checksum, zlib.crc32(snapshot.data))
        try:
            decoded = json.loads(snapshot.data)
            if not isinstance(decoded, dict):
                raise TypeError("snapshot state must be an object")
            state = {str(key): bytes(value) for key, value in decoded.items()}
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"invalid snapshot state: {exc}") from exc
        self.state = state
        self.version = snapshot.version

    async def get_state(self) -> dict[str, bytes]:
        return dict(self.state)