"""Error hierarchy for the consensus core."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from rabia.types import BatchId, NodeId, PhaseId

__all__ = [
    "RabiaError",
    "NetworkError",
    "PersistenceError",
    "StateMachineError",
    "ConsensusError",
    "NodeNotFoundError",
    "PhaseNotFoundError",
    "BatchNotFoundError",
    "InvalidStateTransitionError",
    "QuorumNotAvailableError",
    "ChecksumMismatchError",
    "StateCorruptionError",
    "PartialWriteError",
    "RabiaTimeoutError",
    "RabiaIOError",
    "InternalError",
    "SerializationError",
]


class RabiaError(Exception):
    """Base class of every error raised by the consensus core."""

    retryable: ClassVar[bool] = False

    def is_retryable(self) -> bool:
        """Return True when retrying the failed operation may succeed."""
        return self.retryable


class _MessageError(RabiaError):
    """An error carrying a free-form message behind a fixed prefix."""

    prefix: ClassVar[str] = "Error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"{self.prefix}: {message}")


class NetworkError(_MessageError):
    """Communication between nodes failed."""

    prefix = "Network error"
    retryable = True


class PersistenceError(_MessageError):
    """A storage operation failed."""

    prefix = "Persistence error"


class StateMachineError(_MessageError):
    """The state machine failed to execute a command."""

    prefix = "State machine error"


class ConsensusError(_MessageError):
    """The consensus protocol was violated or failed."""

    prefix = "Consensus error"


class InternalError(_MessageError):
    """An unexpected internal condition."""

    prefix = "Internal error"


class SerializationError(_MessageError):
    """Encoding or decoding of data failed."""

    prefix = "Serialization error"


class NodeNotFoundError(RabiaError):
    """A referenced node is not part of the cluster."""

    def __init__(self, node_id: NodeId) -> None:
        self.node_id = node_id
        super().__init__(f"Node {node_id} not found")


class PhaseNotFoundError(RabiaError):
    """A referenced consensus phase is unknown."""

    def __init__(self, phase_id: PhaseId) -> None:
        self.phase_id = phase_id
        super().__init__(f"Phase {phase_id} not found")


class BatchNotFoundError(RabiaError):
    """A referenced command batch is unknown."""

    def __init__(self, batch_id: BatchId) -> None:
        self.batch_id = batch_id
        super().__init__(f"Batch {batch_id} not found")


class InvalidStateTransitionError(RabiaError):
    """An invalid state transition was attempted."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid state transition from {from_state} to {to_state}")


class QuorumNotAvailableError(RabiaError):
    """Too few nodes are available to form a quorum."""

    retryable = True

    def __init__(self, current: int, required: int) -> None:
        self.current = current
        self.required = required
        super().__init__(f"Quorum not available: {current}/{required} nodes")


class ChecksumMismatchError(RabiaError):
    """A data integrity check failed."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Checksum mismatch: expected {expected}, got {actual}")


class StateCorruptionError(RabiaError):
    """Corruption was detected in persisted state."""

    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"State corruption detected: {details}")


class PartialWriteError(RabiaError):
    """An incomplete write was detected."""

    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"Partial write detected: {details}")


class RabiaTimeoutError(RabiaError):
    """An operation exceeded its time limit."""

    retryable = True

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Timeout occurred: {operation}")


class RabiaIOError(RabiaError):
    """A file system or network I/O operation failed."""

    def __init__(self, error: OSError | str) -> None:
        self.error = error
        super().__init__(f"IO error: {error}")