"""Limiter state stores."""

from quotaguard.store.base import StateDict, StateStore, UpdateFn, routing_key
from quotaguard.store.memory import InMemoryStateStore
from quotaguard.store.redis_store import RedisStateStore
from quotaguard.store.retry import ConflictRetryPolicy
from quotaguard.store.sharded import ShardedStateStore

__all__ = [
    "StateDict",
    "StateStore",
    "UpdateFn",
    "routing_key",
    "InMemoryStateStore",
    "RedisStateStore",
    "ConflictRetryPolicy",
    "ShardedStateStore",
]
