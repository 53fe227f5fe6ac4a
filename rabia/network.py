"""Cluster membership, transport interfaces and quorum monitoring."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Union

from rabia.messages import ProtocolMessage
from rabia.types import NodeId

__all__ = [
    "ClusterConfig",
    "NetworkTransport",
    "NetworkEventHandler",
    "NodeConnected",
    "NodeDisconnected",
    "NetworkPartition",
    "QuorumLost",
    "QuorumRestored",
    "NetworkEvent",
    "NetworkMonitor",
]


@dataclass
class ClusterConfig:
    """The local node, the cluster members and the derived quorum size."""

    node_id: NodeId
    all_nodes: frozenset[NodeId]
    quorum_size: int = field(init=False)

    def __post_init__(self) -> None:
        self.all_nodes = frozenset(self.all_nodes)
        self.quorum_size = len(self.all_nodes) // 2 + 1

    def has_quorum(self, active_nodes: Iterable[NodeId]) -> bool:
        """Return True when the active nodes form a majority."""
        return len(set(active_nodes)) >= self.quorum_size

    def is_majority(self, count: int) -> bool:
        """Return True when count reaches the quorum size."""
        return count >= self.quorum_size

    def total_nodes(self) -> int:
        return len(self.all_nodes)


class NetworkTransport(ABC):
    """Sends and receives protocol messages between nodes."""

    @abstractmethod
    async def send_to(self, target: NodeId, message: ProtocolMessage) -> None:
        """Deliver a message to one node."""

    @abstractmethod
    async def broadcast(self, message: ProtocolMessage, exclude: NodeId | None) -> None:
        """Deliver a message to every connected node except exclude."""

    @abstractmethod
    async def receive(self) -> tuple[NodeId, ProtocolMessage]:
        """Wait for the next message and return its sender and content."""

    @abstractmethod
    async def get_connected_nodes(self) -> set[NodeId]:
        """Return the nodes currently connected."""

    @abstractmethod
    async def is_connected(self, node_id: NodeId) -> bool:
        """Return True when the node is currently connected."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Drop all connections."""

    @abstractmethod
    async def reconnect(self) -> None:
        """Re-establish connections."""


class NetworkEventHandler(ABC):
    """Receives notifications about changes in connectivity."""

    @abstractmethod
    async def on_node_connected(self, node_id: NodeId) -> None: ...

    @abstractmethod
    async def on_node_disconnected(self, node_id: NodeId) -> None: ...

    @abstractmethod
    async def on_network_partition(self, active_nodes: frozenset[NodeId]) -> None: ...

    @abstractmethod
    async def on_quorum_lost(self) -> None: ...

    @abstractmethod
    async def on_quorum_restored(self, active_nodes: frozenset[NodeId]) -> None: ...


@dataclass(frozen=True)
class NodeConnected:
    node_id: NodeId


@dataclass(frozen=True)
class NodeDisconnected:
    node_id: NodeId


@dataclass(frozen=True)
class NetworkPartition:
    active_nodes: frozenset[NodeId]


@dataclass(frozen=True)
class QuorumLost:
    pass


@dataclass(frozen=True)
class QuorumRestored:
    active_nodes: frozenset[NodeId]


NetworkEvent = Union[NodeConnected, NodeDisconnected, NetworkPartition, QuorumLost, QuorumRestored]


class NetworkMonitor:
    """Tracks connected nodes and reports connectivity and quorum changes."""

    def __init__(self, config: ClusterConfig) -> None:
        self._config = config
        self._connected: frozenset[NodeId] = frozenset(config.all_nodes)
        self._has_quorum = config.has_quorum(self._connected)

    def update_connected_nodes(self, nodes: Iterable[NodeId]) -> list[NetworkEvent]:
        """Record the new set of connected nodes and return the resulting events."""
        current = frozenset(nodes)
        newly_connected = sorted(current - self._connected)
        newly_disconnected = sorted(self._connected - current)

        events: list[NetworkEvent] = [NodeConnected(node) for node in newly_connected]
        events.extend(NodeDisconnected(node) for node in newly_disconnected)

        new_has_quorum = self._config.has_quorum(current)
        if self._has_quorum and not new_has_quorum:
            events.append(QuorumLost())
        elif not self._has_quorum and new_has_quorum:
            events.append(QuorumRestored(current))

        if newly_connected or newly_disconnected:
            events.append(NetworkPartition(current))

        self._connected = current
        self._has_quorum = new_has_quorum
        return events

    def has_quorum(self) -> bool:
        return self._has_quorum

    def connected_nodes(self) -> frozenset[NodeId]:
        return self._connected

    def quorum_size(self) -> int:
        return self._config.quorum_size