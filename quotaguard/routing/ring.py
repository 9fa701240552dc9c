"""Consistent hash ring for routing client keys to state shards.

Maps keys to nodes so that adding or removing a node moves only about
``1/num_nodes`` of the keys. Each physical node is placed on the ring
``virtual_nodes`` times for an even spread.

Reads are lock-free: the ring is an immutable snapshot replaced wholesale
(copy-on-write) on topology changes, so routing never waits on the rare
reconfiguration path.
"""

import bisect
import hashlib
import threading
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from quotaguard.core.logging import get_logger
from quotaguard.exceptions import NoNodesAvailableError

logger = get_logger(__name__)

DEFAULT_VIRTUAL_NODES = 100


def ring_hash(value: str) -> int:
    """Position of a string on the ring (first 64 bits of its MD5)."""
    return int(hashlib.md5(value.encode("utf-8")).hexdigest()[:16], 16)


@dataclass(frozen=True)
class RingSnapshot:
    """Immutable view of the ring: sorted positions and their owners."""

    positions: Tuple[int, ...] = ()
    owners: Tuple[str, ...] = ()
    nodes: FrozenSet[str] = frozenset()

    def route(self, key: str) -> str:
        if not self.positions:
            raise NoNodesAvailableError()
        index = bisect.bisect_left(self.positions, ring_hash(key))
        if index == len(self.positions):
            index = 0  # wrap around
        return self.owners[index]


class ConsistentHashRing:
    """Consistent hash ring with virtual nodes.

    Usage:
        ring = ConsistentHashRing(["redis-a", "redis-b"], virtual_nodes=100)
        node_id = ring.route("client-42")
        ring.add_node("redis-c")
    """

    def __init__(
        self,
        nodes: Optional[Iterable[str]] = None,
        virtual_nodes: int = DEFAULT_VIRTUAL_NODES,
    ):
        if virtual_nodes < 1:
            raise ValueError("virtual_nodes must be at least 1")
        self._virtual_nodes = virtual_nodes
        self._write_lock = threading.Lock()
        self._snapshot = RingSnapshot()
        if nodes:
            self._rebuild(frozenset(nodes))

    def _build(self, nodes: FrozenSet[str]) -> RingSnapshot:
        entries: Dict[int, str] = {}
        # Sorted iteration keeps the rare position collision deterministic
        for node_id in sorted(nodes):
            for i in range(self._virtual_nodes):
                entries.setdefault(ring_hash(f"{node_id}#{i}"), node_id)
        positions = tuple(sorted(entries))
        return RingSnapshot(
            positions=positions,
            owners=tuple(entries[p] for p in positions),
            nodes=nodes,
        )

    def _rebuild(self, nodes: FrozenSet[str]) -> None:
        self._snapshot = self._build(nodes)

    def add_node(self, node_id: str) -> bool:
        """Add a node. Returns False if it was already present."""
        with self._write_lock:
            current = self._snapshot.nodes
            if node_id in current:
                return False
            self._rebuild(current | {node_id})
        logger.info(
            f"Node {node_id} added to hash ring ({len(current) + 1} nodes)",
            extra={"node_id": node_id},
        )
        return True

    def remove_node(self, node_id: str) -> bool:
        """Remove a node. Returns False if it was not present."""
        with self._write_lock:
            current = self._snapshot.nodes
            if node_id not in current:
                return False
            self._rebuild(current - {node_id})
        logger.info(
            f"Node {node_id} removed from hash ring ({len(current) - 1} nodes)",
            extra={"node_id": node_id},
        )
        return True

    def route(self, key: str) -> str:
        """Node owning ``key``: the first ring position at or after its hash.

        Raises:
            NoNodesAvailableError: If the ring is empty
        """
        return self._snapshot.route(key)

    def route_many(self, keys: Iterable[str]) -> Dict[str, str]:
        """Route several keys against one consistent snapshot."""
        snapshot = self._snapshot
        return {key: snapshot.route(key) for key in keys}

    def snapshot(self) -> RingSnapshot:
        return self._snapshot

    @property
    def nodes(self) -> List[str]:
        return sorted(self._snapshot.nodes)

    @property
    def virtual_nodes(self) -> int:
        return self._virtual_nodes

    def __len__(self) -> int:
        return len(self._snapshot.nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._snapshot.nodes
