"""State store sharded over several nodes by consistent hashing.

The owning node of a key is chosen from the key's hash tag (see
``routing_key``), so all state of one client lands on the same node. Adding
a node moves only the keys whose ring segment it takes over; their state
starts fresh on the new owner.
"""

from typing import Dict, Mapping, Optional

from quotaguard.core.logging import get_logger
from quotaguard.routing.ring import DEFAULT_VIRTUAL_NODES, ConsistentHashRing
from quotaguard.store.base import StateDict, StateStore, UpdateFn, routing_key

logger = get_logger(__name__)


class ShardedStateStore(StateStore):
    """Composite store routing each key to one of several node stores."""

    def __init__(
        self,
        nodes: Optional[Mapping[str, StateStore]] = None,
        virtual_nodes: int = DEFAULT_VIRTUAL_NODES,
    ):
        self._stores: Dict[str, StateStore] = dict(nodes or {})
        self._ring = ConsistentHashRing(self._stores, virtual_nodes=virtual_nodes)

    @property
    def ring(self) -> ConsistentHashRing:
        return self._ring

    @property
    def node_ids(self):
        return self._ring.nodes

    def node_for(self, key: str) -> str:
        """Node id owning ``key``.

        Raises:
            NoNodesAvailableError: If no node is configured
        """
        return self._ring.route(routing_key(key))

    def store_for(self, key: str) -> StateStore:
        return self._stores[self.node_for(key)]

    def add_node(self, node_id: str, store: StateStore) -> None:
        """Put a new node into rotation.

        Raises:
            ValueError: If ``node_id`` is already registered
        """
        if node_id in self._stores:
            raise ValueError(f"Node {node_id!r} is already registered")
        # Register the store before the ring can route to it
        self._stores[node_id] = store
        self._ring.add_node(node_id)

    async def remove_node(self, node_id: str, close: bool = True) -> Optional[StateStore]:
        """Take a node out of rotation, optionally closing its store."""
        if not self._ring.remove_node(node_id):
            return None
        store = self._stores.pop(node_id)
        if close:
            await store.close()
        return store

    async def atomic_update(
        self, key: str, fn: UpdateFn, ttl: Optional[float] = None
    ) -> StateDict:
        return await self.store_for(key).atomic_update(key, fn, ttl)

    async def get(self, key: str) -> Optional[StateDict]:
        return await self.store_for(key).get(key)

    async def delete(self, key: str) -> None:
        await self.store_for(key).delete(key)

    async def cleanup(self) -> int:
        removed = 0
        for store in list(self._stores.values()):
            removed += await store.cleanup()
        return removed

    async def close(self) -> None:
        for node_id, store in list(self._stores.items()):
            logger.debug(f"Closing state store for node {node_id}", extra={"node_id": node_id})
            await store.close()
