"""Protocol messages exchanged between nodes, and per-phase bookkeeping."""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union
from uuid import UUID, uuid4

from rabia.errors import SerializationError
from rabia.state_machine import Snapshot
from rabia.types import BatchId, CommandBatch, NodeId, PhaseId, StateValue

__all__ = [
    "ProposeMessage",
    "VoteRound1Message",
    "VoteRound2Message",
    "DecisionMessage",
    "SyncRequestMessage",
    "SyncResponseMessage",
    "NewBatchMessage",
    "HeartBeatMessage",
    "QuorumNotificationMessage",
    "ProtocolMessage",
    "PhaseData",
    "PendingBatch",
]

_U64_MAX = 2**64 - 1


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


def _uuid(value: Any) -> UUID:
    if not isinstance(value, str):
        raise TypeError(f"expected a UUID string, got {type(value).__name__}")
    return UUID(value)


def _node(value: Any) -> NodeId:
    return NodeId(_uuid(value))


def _batch_id(value: Any) -> BatchId:
    return BatchId(_uuid(value))


def _u64(value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= _U64_MAX:
        raise ValueError(f"invalid unsigned integer: {value!r}")
    return value


def _bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"expected a boolean, got {value!r}")
    return value


def _votes_to_dict(votes: dict[NodeId, StateValue]) -> dict[str, str]:
    return {str(node): vote.value for node, vote in votes.items()}


def _votes_from_dict(data: Any) -> dict[NodeId, StateValue]:
    if not isinstance(data, dict):
        raise TypeError("vote map must be an object")
    return {_node(node): StateValue(vote) for node, vote in data.items()}


def _batch_to_dict(batch: CommandBatch | None) -> dict[str, Any] | None:
    return None if batch is None else batch.to_dict()


def _batch_from_dict(data: Any) -> CommandBatch | None:
    return None if data is None else CommandBatch.from_dict(data)


@dataclass
class ProposeMessage:
    """A proposal of a value for a phase."""

    phase_id: PhaseId
    batch_id: BatchId
    value: StateValue
    batch: CommandBatch | None = None

    def _to_dict(self) -> dict[str, Any]:
        return {
            "phase_id": self.phase_id.value(),
            "batch_id": str(self.batch_id),
            "value": self.value.value,
            "batch": _batch_to_dict(self.batch),
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ProposeMessage:
        return cls(
            PhaseId(data["phase_id"]),
            _batch_id(data["batch_id"]),
            StateValue(data["value"]),
            _batch_from_dict(data.get("batch")),
        )


@dataclass
class VoteRound1Message:
    """A first-round vote."""

    phase_id: PhaseId
    batch_id: BatchId
    vote: StateValue
    voter_id: NodeId

    def _to_dict(self) -> dict[str, Any]:
        return {
            "phase_id": self.phase_id.value(),
            "batch_id": str(self.batch_id),
            "vote": self.vote.value,
            "voter_id": str(self.voter_id),
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> VoteRound1Message:
        return cls(
            PhaseId(data["phase_id"]),
            _batch_id(data["batch_id"]),
            StateValue(data["vote"]),
            _node(data["voter_id"]),
        )


@dataclass
class VoteRound2Message:
    """A second-round vote carrying the first-round votes it was based on."""

    phase_id: PhaseId
    batch_id: BatchId
    vote: StateValue
    voter_id: NodeId
    round1_votes: dict[NodeId, StateValue] = field(default_factory=dict)

    def _to_dict(self) -> dict[str, Any]:
        return {
            "phase_id": self.phase_id.value(),
            "batch_id": str(self.batch_id),
            "vote": self.vote.value,
            "voter_id": str(self.voter_id),
            "round1_votes": _votes_to_dict(self.round1_votes),
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> VoteRound2Message:
        return cls(
            PhaseId(data["phase_id"]),
            _batch_id(data["batch_id"]),
            StateValue(data["vote"]),
            _node(data["voter_id"]),
            _votes_from_dict(data["round1_votes"]),
        )


@dataclass
class DecisionMessage:
    """The decided value of a phase."""

    phase_id: PhaseId
    batch_id: BatchId
    decision: StateValue
    batch: CommandBatch | None = None

    def _to_dict(self) -> dict[str, Any]:
        return {
            "phase_id": self.phase_id.value(),
            "batch_id": str(self.batch_id),
            "decision": self.decision.value,
            "batch": _batch_to_dict(self.batch),
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> DecisionMessage:
        return cls(
            PhaseId(data["phase_id"]),
            _batch_id(data["batch_id"]),
            StateValue(data["decision"]),
            _batch_from_dict(data.get("batch")),
        )


@dataclass
class SyncRequestMessage:
    """A request for state from a lagging node."""

    requester_phase: PhaseId
    requester_state_version: int

    def _to_dict(self) -> dict[str, Any]:
        return {
            "requester_phase": self.requester_phase.value(),
            "requester_state_version": self.requester_state_version,
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> SyncRequestMessage:
        return cls(PhaseId(data["requester_phase"]), _u64(data["requester_state_version"]))


@dataclass
class SyncResponseMessage:
    """State sent in answer to a sync request."""

    responder_phase: PhaseId
    responder_state_version: int
    state_snapshot: Snapshot | None = None
    pending_batches: list[tuple[BatchId, CommandBatch]] = field(default_factory=list)
    committed_phases: list[tuple[PhaseId, BatchId, StateValue]] = field(default_factory=list)

    def _to_dict(self) -> dict[str, Any]:
        return {
            "responder_phase": self.responder_phase.value(),
            "responder_state_version": self.responder_state_version,
            "state_snapshot": None if self.state_snapshot is None else self.state_snapshot.to_dict(),
            "pending_batches": [
                [str(batch_id), batch.to_dict()] for batch_id, batch in self.pending_batches
            ],
            "committed_phases": [
                [phase.value(), str(batch_id), value.value]
                for phase, batch_id, value in self.committed_phases
            ],
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> SyncResponseMessage:
        snapshot = data.get("state_snapshot")
        pending = [
            (_batch_id(batch_id), CommandBatch.from_dict(batch))
            for batch_id, batch in data["pending_batches"]
        ]
        committed = [
            (PhaseId(phase), _batch_id(batch_id), StateValue(value))
            for phase, batch_id, value in data["committed_phases"]
        ]
        return cls(
            PhaseId(data["responder_phase"]),
            _u64(data["responder_state_version"]),
            None if snapshot is None else Snapshot.from_dict(snapshot),
            pending,
            committed,
        )


@dataclass
class NewBatchMessage:
    """Announcement of a new command batch."""

    batch: CommandBatch
    originator: NodeId

    def _to_dict(self) -> dict[str, Any]:
        return {"batch": self.batch.to_dict(), "originator": str(self.originator)}

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> NewBatchMessage:
        return cls(CommandBatch.from_dict(data["batch"]), _node(data["originator"]))


@dataclass
class HeartBeatMessage:
    """Periodic liveness and progress report."""

    current_phase: PhaseId
    last_committed_phase: PhaseId
    active: bool

    def _to_dict(self) -> dict[str, Any]:
        return {
            "current_phase": self.current_phase.value(),
            "last_committed_phase": self.last_committed_phase.value(),
            "active": self.active,
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> HeartBeatMessage:
        return cls(
            PhaseId(data["current_phase"]),
            PhaseId(data["last_committed_phase"]),
            _bool(data["active"]),
        )


@dataclass
class QuorumNotificationMessage:
    """Notice of whether the cluster currently has a quorum."""

    has_quorum: bool
    active_nodes: list[NodeId] = field(default_factory=list)

    def _to_dict(self) -> dict[str, Any]:
        return {
            "has_quorum": self.has_quorum,
            "active_nodes": [str(node) for node in self.active_nodes],
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> QuorumNotificationMessage:
        return cls(_bool(data["has_quorum"]), [_node(node) for node in data["active_nodes"]])


Payload = Union[
    ProposeMessage,
    VoteRound1Message,
    VoteRound2Message,
    DecisionMessage,
    SyncRequestMessage,
    SyncResponseMessage,
    NewBatchMessage,
    HeartBeatMessage,
    QuorumNotificationMessage,
]

_TAGS: dict[type, str] = {
    ProposeMessage: "Propose",
    VoteRound1Message: "VoteRound1",
    VoteRound2Message: "VoteRound2",
    DecisionMessage: "Decision",
    SyncRequestMessage: "SyncRequest",
    SyncResponseMessage: "SyncResponse",
    NewBatchMessage: "NewBatch",
    HeartBeatMessage: "HeartBeat",
    QuorumNotificationMessage: "QuorumNotification",
}
_KINDS: dict[str, type] = {tag: kind for kind, tag in _TAGS.items()}


@dataclass
class ProtocolMessage:
    """An envelope around one payload; `to` is None for a broadcast."""

    id: UUID
    sender: NodeId
    to: NodeId | None
    timestamp: int
    payload: Payload

    TAGS: ClassVar[tuple[str, ...]] = tuple(_KINDS)

    @classmethod
    def create(cls, sender: NodeId, to: NodeId | None, payload: Payload) -> ProtocolMessage:
        """Return a message with a fresh id stamped with the current time."""
        if type(payload) not in _TAGS:
            raise TypeError(f"unsupported message payload: {type(payload).__name__}")
        return cls(uuid4(), sender, to, _now_millis(), payload)

    @classmethod
    def propose(cls, sender: NodeId, proposal: ProposeMessage) -> ProtocolMessage:
        return cls.create(sender, None, proposal)

    @classmethod
    def vote_round1(cls, sender: NodeId, to: NodeId, vote: VoteRound1Message) -> ProtocolMessage:
        return cls.create(sender, to, vote)

    @classmethod
    def vote_round2(cls, sender: NodeId, to: NodeId, vote: VoteRound2Message) -> ProtocolMessage:
        return cls.create(sender, to, vote)

    @classmethod
    def decision(cls, sender: NodeId, decision: DecisionMessage) -> ProtocolMessage:
        return cls.create(sender, None, decision)

    @classmethod
    def sync_request(
        cls, sender: NodeId, to: NodeId, request: SyncRequestMessage
    ) -> ProtocolMessage:
        return cls.create(sender, to, request)

    @classmethod
    def sync_response(
        cls, sender: NodeId, to: NodeId, response: SyncResponseMessage
    ) -> ProtocolMessage:
        return cls.create(sender, to, response)

    @classmethod
    def new_batch(cls, sender: NodeId, batch: NewBatchMessage) -> ProtocolMessage:
        return cls.create(sender, None, batch)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible representation."""
        return {
            "id": str(self.id),
            "from": str(self.sender),
            "to": None if self.to is None else str(self.to),
            "timestamp": self.timestamp,
            "message_type": {_TAGS[type(self.payload)]: self.payload._to_dict()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProtocolMessage:
        """Rebuild a message from the output of to_dict."""
        try:
            message_type = data["message_type"]
            if not isinstance(message_type, dict) or len(message_type) != 1:
                raise ValueError("message_type must hold exactly one variant")
            ((tag, body),) = message_type.items()
            kind = _KINDS.get(tag)
            if kind is None:
                raise ValueError(f"unknown message type {tag!r}")
            payload = kind._from_dict(body)
            to = data.get("to")
            return cls(
                _uuid(data["id"]),
                _node(data["from"]),
                None if to is None else _node(to),
                _u64(data["timestamp"]),
                payload,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise SerializationError(f"invalid protocol message: {exc}") from exc


def _majority(votes: dict[NodeId, StateValue], quorum_size: int) -> StateValue | None:
    counts = Counter(votes.values())
    for value in (StateValue.V0, StateValue.V1, StateValue.VQUESTION):
        if counts[value] >= quorum_size:
            return value
    return None


@dataclass
class PhaseData:
    """Votes and outcome collected for one consensus phase."""

    phase_id: PhaseId
    batch_id: BatchId | None = None
    proposed_value: StateValue | None = None
    round1_votes: dict[NodeId, StateValue] = field(default_factory=dict)
    round2_votes: dict[NodeId, StateValue] = field(default_factory=dict)
    decision: StateValue | None = None
    batch: CommandBatch | None = None
    timestamp: int = field(default_factory=_now_millis)
    is_committed: bool = False

    def add_round1_vote(self, voter: NodeId, vote: StateValue) -> None:
        self.round1_votes[voter] = vote

    def add_round2_vote(self, voter: NodeId, vote: StateValue) -> None:
        self.round2_votes[voter] = vote

    def has_round1_majority(self, quorum_size: int) -> StateValue | None:
        """Return the value with at least quorum_size first-round votes, if any."""
        return _majority(self.round1_votes, quorum_size)

    def has_round2_majority(self, quorum_size: int) -> StateValue | None:
        """Return the value with at least quorum_size second-round votes, if any."""
        return _majority(self.round2_votes, quorum_size)

    def total_votes(self) -> int:
        """Return the larger of the two rounds' vote counts."""
        return max(len(self.round1_votes), len(self.round2_votes))

    def set_decision(self, decision: StateValue) -> None:
        """Record the decision; any value other than V? commits the phase."""
        self.decision = decision
        if decision is not StateValue.VQUESTION:
            self.is_committed = True


@dataclass
class PendingBatch:
    """A batch awaiting consensus."""

    batch: CommandBatch
    originator: NodeId
    received_timestamp: int = field(default_factory=_now_millis)
    retry_count: int = 0

    def increment_retry(self) -> None:
        self.retry_count += 1

    def age_millis(self) -> int:
        """Return milliseconds since the batch was received, never negative."""
        return max(0, _now_millis() - self.received_timestamp)