"""State store contract.

A state store holds limiter state as JSON-compatible dicts and offers one
indivisible read-modify-write primitive. For a given key, the effect of
concurrent ``atomic_update`` calls must equal some serial order of them.
"""

import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

StateDict = Dict[str, Any]
UpdateFn = Callable[[Optional[StateDict]], StateDict]

_HASH_TAG = re.compile(r"\{([^{}]+)\}")


def routing_key(key: str) -> str:
    """Part of a storage key that decides placement.

    Follows the Redis Cluster hash tag convention: the first non-empty
    ``{...}`` section if present, otherwise the whole key.

    Examples:
        >>> routing_key("quotaguard:free:v1:{client-42}")
        'client-42'
        >>> routing_key("plain-key")
        'plain-key'
    """
    match = _HASH_TAG.search(key)
    return match.group(1) if match else key


class StateStore(ABC):
    """Abstract base class for limiter state stores."""

    @abstractmethod
    async def atomic_update(
        self, key: str, fn: UpdateFn, ttl: Optional[float] = None
    ) -> StateDict:
        """Apply ``fn`` to the state at ``key`` as one indivisible step.

        Args:
            key: Storage key
            fn: Pure function from the current state (None if absent or
                expired) to the new state. It may be invoked more than once;
                only the invocation whose result is committed counts.
            ttl: Seconds of inactivity after which the state expires

        Returns:
            The committed new state

        Raises:
            StoreUnavailableError: If the store cannot complete the update
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[StateDict]:
        """Read the state at ``key`` without modifying it."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the state at ``key``."""
        ...

    async def cleanup(self) -> int:
        """Remove expired entries. Returns the number removed."""
        return 0

    async def close(self) -> None:
        """Release connections held by the store."""
        return None
