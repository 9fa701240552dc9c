"""In-process state store.

Suitable for single-instance deployments and tests. ``atomic_update`` holds a
per-key ``asyncio.Lock`` around a synchronous update function, so the
critical section contains no awaits.

Memory optimization:
- Uses OrderedDict for LRU eviction
- Limits max entries to prevent unbounded memory growth
- Lazy TTL expiry on access plus an explicit ``cleanup()``
"""

import asyncio
import copy
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from quotaguard.core.logging import get_logger
from quotaguard.store.base import StateDict, StateStore, UpdateFn

logger = get_logger(__name__)


@dataclass
class _Entry:
    state: StateDict
    expires_at: Optional[float]

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class InMemoryStateStore(StateStore):
    """In-memory state store with per-key locking, TTL and LRU cap."""

    DEFAULT_MAX_ENTRIES = 100_000

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the store.

        Args:
            max_entries: Maximum number of keys kept (LRU eviction beyond it)
            clock: Monotonic time source used for TTL bookkeeping
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _live_entry(self, key: str, now: float) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is not None and entry.expired(now):
            del self._entries[key]
            return None
        return entry

    def _enforce_lru_limit(self) -> None:
        """Evict least recently used keys beyond ``max_entries``."""
        while len(self._entries) > self._max_entries:
            key, _ = self._entries.popitem(last=False)
            lock = self._locks.get(key)
            if lock is not None and not lock.locked():
                del self._locks[key]
            logger.debug(f"Evicted state for {key} (LRU limit {self._max_entries})")

    async def atomic_update(
        self, key: str, fn: UpdateFn, ttl: Optional[float] = None
    ) -> StateDict:
        async with self._lock_for(key):
            now = self._clock()
            entry = self._live_entry(key, now)
            # The update function gets a private copy so a raising fn
            # leaves the stored state untouched
            current = copy.deepcopy(entry.state) if entry is not None else None
            new_state = fn(current)

            expires_at = now + ttl if ttl is not None and ttl > 0 else None
            self._entries[key] = _Entry(state=new_state, expires_at=expires_at)
            self._entries.move_to_end(key)
            self._enforce_lru_limit()
            return copy.deepcopy(new_state)

    async def get(self, key: str) -> Optional[StateDict]:
        entry = self._live_entry(key, self._clock())
        return copy.deepcopy(entry.state) if entry is not None else None

    async def delete(self, key: str) -> None:
        async with self._lock_for(key):
            self._entries.pop(key, None)

    async def cleanup(self) -> int:
        """Remove expired entries and idle locks."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expired(now)]
        for key in expired:
            del self._entries[key]
        for key in [k for k, lock in self._locks.items() if k not in self._entries and not lock.locked()]:
            del self._locks[key]
        if expired:
            logger.debug(f"Removed {len(expired)} expired state entries")
        return len(expired)

    async def close(self) -> None:
        self._entries.clear()
        self._locks.clear()

    def __len__(self) -> int:
        return len(self._entries)
