"""Interface for typed, deterministic replicated state machines."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Generic, TypeVar

__all__ = ["StateMachine"]

CommandT = TypeVar("CommandT")
ResponseT = TypeVar("ResponseT")
StateT = TypeVar("StateT")


class StateMachine(ABC, Generic[CommandT, ResponseT, StateT]):
    """A deterministic state machine replicated by consensus.

    Given the same state and command, apply_command must always produce the
    same response and resulting state on every replica.
    """

    @abstractmethod
    async def apply_command(self, command: CommandT) -> ResponseT:
        """Apply one command and return its response."""

    @abstractmethod
    def get_state(self) -> StateT:
        """Return the current state."""

    @abstractmethod
    def set_state(self, state: StateT) -> None:
        """Replace the current state."""

    @abstractmethod
    def serialize_state(self) -> bytes:
        """Return the current state encoded as bytes."""

    @abstractmethod
    def deserialize_state(self, data: bytes) -> None:
        """Restore the state from bytes; raise if the data is invalid."""

    async def apply_commands(self, commands: Iterable[CommandT]) -> list[ResponseT]:
        """Apply commands one after another and return their responses."""
        return [await self.apply_command(command) for command in commands]

    def is_deterministic(self) -> bool:
        """Return True; state machines used with consensus must be deterministic."""
        return True