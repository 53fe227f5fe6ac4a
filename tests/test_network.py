import pytest

from rabia.network import (
    ClusterConfig,
    NetworkEventHandler,
    NetworkMonitor,
    NetworkPartition,
    NetworkTransport,
    NodeConnected,
    NodeDisconnected,
    QuorumLost,
    QuorumRestored,
)
from rabia.types import NodeId


def _nodes(count):
    return sorted(NodeId.from_u32(i + 1) for i in range(count))


@pytest.mark.parametrize("count", [1, 2, 3, 4, 5, 7, 10])
def test_quorum_size_is_smallest_strict_majority(count):
    nodes = _nodes(count)
    config = ClusterConfig(nodes[0], frozenset(nodes))
    assert config.total_nodes() == count
    assert config.quorum_size * 2 > count
    assert (config.quorum_size - 1) * 2 <= count


def test_has_quorum_and_is_majority_agree():
    nodes = _nodes(5)
    config = ClusterConfig(nodes[0], frozenset(nodes))
    for size in range(len(nodes) + 1):
        active = set(nodes[:size])
        assert config.has_quorum(active) == config.is_majority(size)
    assert config.has_quorum(nodes)
    assert not config.has_quorum(set())


def test_all_nodes_stored_as_frozenset():
    nodes = _nodes(3)
    config = ClusterConfig(nodes[0], set(nodes))
    assert config.all_nodes == frozenset(nodes)


def test_monitor_starts_with_all_nodes():
    nodes = _nodes(3)
    config = ClusterConfig(nodes[0], frozenset(nodes))
    monitor = NetworkMonitor(config)
    assert monitor.connected_nodes() == frozenset(nodes)
    assert monitor.has_quorum()
    assert monitor.quorum_size() == config.quorum_size


def test_losing_quorum_events():
    a, b, c = _nodes(3)
    monitor = NetworkMonitor(ClusterConfig(a, frozenset({a, b, c})))
    events = monitor.update_connected_nodes({a})
    assert events == [
        NodeDisconnected(b),
        NodeDisconnected(c),
        QuorumLost(),
        NetworkPartition(frozenset({a})),
    ]
    assert not monitor.has_quorum()
    assert monitor.connected_nodes() == frozenset({a})


def test_restoring_quorum_events():
    a, b, c = _nodes(3)
    monitor = NetworkMonitor(ClusterConfig(a, frozenset({a, b, c})))
    monitor.update_connected_nodes({a})
    events = monitor.update_connected_nodes({a, c})
    assert events == [
        NodeConnected(c),
        QuorumRestored(frozenset({a, c})),
        NetworkPartition(frozenset({a, c})),
    ]
    assert monitor.has_quorum()


def test_no_change_produces_no_events():
    nodes = _nodes(3)
    monitor = NetworkMonitor(ClusterConfig(nodes[0], frozenset(nodes)))
    assert monitor.update_connected_nodes(set(nodes)) == []


def test_change_without_quorum_change():
    a, b, c = _nodes(3)
    monitor = NetworkMonitor(ClusterConfig(a, frozenset({a, b, c})))
    events = monitor.update_connected_nodes({a, b})
    assert events == [NodeDisconnected(c), NetworkPartition(frozenset({a, b}))]
    assert monitor.has_quorum()


def test_unknown_node_counts_as_connected():
    a, b, c = _nodes(3)
    stranger = NodeId.from_u32(99)
    monitor = NetworkMonitor(ClusterConfig(a, frozenset({a, b, c})))
    events = monitor.update_connected_nodes({a, b, c, stranger})
    assert events == [
        NodeConnected(stranger),
        NetworkPartition(frozenset({a, b, c, stranger})),
    ]


def test_interfaces_are_abstract():
    with pytest.raises(TypeError):
        NetworkTransport()
    with pytest.raises(TypeError):
        NetworkEventHandler()