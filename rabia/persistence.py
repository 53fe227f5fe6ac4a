"""Engine state persistence."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass

from rabia.errors import SerializationError
from rabia.state_machine import Snapshot
from rabia.types import PhaseId

__all__ = ["EngineState", "PersistenceLayer"]


@dataclass
class EngineState:
    """The minimal state the consensus engine persists."""

    current_phase: PhaseId
    last_committed_phase: PhaseId
    snapshot: Snapshot | None = None

    def to_bytes(self) -> bytes:
        """Encode the state as compact JSON."""
        document = {
            "current_phase": self.current_phase.value(),
            "last_committed_phase": self.last_committed_phase.value(),
            "snapshot": None if self.snapshot is None else self.snapshot.to_dict(),
        }
        return json.dumps(document, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> EngineState:
        """Decode state produced by to_bytes."""
        try:
            document = json.loads(bytes(data))
            if not isinstance(document, dict):
                raise TypeError("engine state must be an object")
            current = PhaseId(document["current_phase"])
            committed = PhaseId(document["last_committed_phase"])
            snapshot_data = document.get("snapshot")
        except (KeyError, TypeError, ValueError) as exc:
            raise SerializationError(f"Failed to deserialize engine state: {exc}") from exc
        snapshot = None if snapshot_data is None else Snapshot.from_dict(snapshot_data)
        return cls(current, committed, snapshot)


class PersistenceLayer(ABC):
    """Storage for a single opaque state value."""

    @abstractmethod
    async def save_state(self, state: bytes) -> None:
        """Persist the given state, replacing any previous one."""

    @abstractmethod
    async def load_state(self) -> bytes | None:
        """Return the persisted state, or None if nothing was saved yet."""