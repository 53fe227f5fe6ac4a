"""Sanity checks for protocol messages, command batches and phase progressions."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TypeVar

from rabia.errors import InternalError, InvalidStateTransitionError
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
from rabia.types import BatchId, CommandBatch, NodeId, PhaseId

__all__ = [
    "ValidationConfig",
    "validate",
    "validate_message",
    "validate_batch",
    "validate_message_sequence",
]

_U64_MAX = 2**64 - 1
_MAX_PHASE_JUMP = 1000

T = TypeVar("T", ProtocolMessage, CommandBatch)


@dataclass(frozen=True)
class ValidationConfig:
    """Limits applied when validating messages and batches."""

    max_batch_size: int = 1000
    max_command_size: int = 1024 * 1024
    max_clock_skew_ms: int = 60_000
    min_phase_id: int = 0
    max_phase_id: int = _U64_MAX


_DEFAULT_CONFIG = ValidationConfig()


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


def _check_phase(phase_id: PhaseId) -> None:
    config = _DEFAULT_CONFIG
    value = phase_id.value()
    if not config.min_phase_id <= value <= config.max_phase_id:
        raise InternalError(
            f"Phase ID {value} is out of valid range "
            f"[{config.min_phase_id}, {config.max_phase_id}]"
        )


def _check_batch_id(batch_id: BatchId) -> None:
    # Any well-formed UUID is accepted.
    del batch_id


def _check_node(node_id: NodeId) -> None:
    # Any well-formed UUID is accepted.
    del node_id


def validate_batch(batch: CommandBatch) -> CommandBatch:
    """Raise if the batch breaks a limit; otherwise return it unchanged."""
    config = _DEFAULT_CONFIG
    count = len(batch.commands)
    if count > config.max_batch_size:
        raise InternalError(f"Batch size {count} exceeds maximum {config.max_batch_size}")
    if not batch.commands:
        raise InternalError("Batch cannot be empty")

    for command in batch.commands:
        size = len(command.data)
        if size > config.max_command_size:
            raise InternalError(
                f"Command size {size} exceeds maximum {config.max_command_size}"
            )
        if size == 0:
            raise InternalError("Command data cannot be empty")

    if batch.timestamp > _now_millis() + config.max_clock_skew_ms:
        raise InternalError(f"Batch timestamp {batch.timestamp} is too far in the future")
    return batch


def _check_payload(payload: object) -> None:
    match payload:
        case ProposeMessage() | DecisionMessage():
            _check_phase(payload.phase_id)
            _check_batch_id(payload.batch_id)
            if payload.batch is not None:
                validate_batch(payload.batch)
        case VoteRound1Message():
            _check_phase(payload.phase_id)
            _check_batch_id(payload.batch_id)
            _check_node(payload.voter_id)
        case VoteRound2Message():
            _check_phase(payload.phase_id)
            _check_batch_id(payload.batch_id)
            _check_node(payload.voter_id)
            if not payload.round1_votes:
                raise InternalError("Round 2 vote must include round 1 votes")
        case SyncRequestMessage():
            _check_phase(payload.requester_phase)
        case SyncResponseMessage():
            _check_phase(payload.responder_phase)
            for batch_id, batch in payload.pending_batches:
                _check_batch_id(batch_id)
                validate_batch(batch)
        case NewBatchMessage():
            validate_batch(payload.batch)
            _check_node(payload.originator)
        case HeartBeatMessage():
            _check_phase(payload.current_phase)
            _check_phase(payload.last_committed_phase)
            if payload.last_committed_phase > payload.current_phase:
                raise InvalidStateTransitionError(
                    f"committed={payload.last_committed_phase}",
                    f"current={payload.current_phase}",
                )
        case QuorumNotificationMessage():
            for node_id in payload.active_nodes:
                _check_node(node_id)
        case _:
            raise TypeError(f"unsupported message payload: {type(payload).__name__}")


def validate_message(message: ProtocolMessage) -> ProtocolMessage:
    """Raise if the message is malformed or stale; otherwise return it unchanged."""
    config = _DEFAULT_CONFIG
    now = _now_millis()
    if message.timestamp > now + config.max_clock_skew_ms:
        raise InternalError(
            f"Message timestamp {message.timestamp} is too far in the future (current: {now})"
        )
    if max(0, now - message.timestamp) > config.max_clock_skew_ms * 10:
        raise InternalError(
            f"Message timestamp {message.timestamp} is too old (current: {now})"
        )
    _check_payload(message.payload)
    return message


def validate(target: T) -> T:
    """Validate a protocol message or a command batch and return it unchanged."""
    if isinstance(target, ProtocolMessage):
        return validate_message(target)
    if isinstance(target, CommandBatch):
        return validate_batch(target)
    raise TypeError(f"cannot validate {type(target).__name__}")


def validate_message_sequence(previous_phase: PhaseId, current_phase: PhaseId) -> None:
    """Raise unless current_phase moves forward from previous_phase by a sane step."""
    if current_phase.value() <= previous_phase.value():
        raise InvalidStateTransitionError(
            f"phase={previous_phase}", f"phase={current_phase}"
        )
    jump = current_phase.value() - previous_phase.value()
    if jump > _MAX_PHASE_JUMP:
        raise InternalError(f"Phase jump {jump} is suspiciously large")