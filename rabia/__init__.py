"""Identifiers, protocol messages, validation, quorum tracking, serialization,
buffer pools, batching and interfaces for the Rabia consensus protocol."""

__version__ = "0.4.1"

__all__ = [
    "batching",
    "errors",
    "memory_pool",
    "messages",
    "network",
    "persistence",
    "serialization",
    "smr",
    "state_machine",
    "types",
    "validation",
]