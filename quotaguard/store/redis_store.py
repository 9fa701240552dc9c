"""Redis-backed state store using optimistic concurrency.

Each key is a hash ``{state: <json>, version: <int>}``. An update reads both
fields, computes the new state in Python and writes it back only if the
version is unchanged. A conflicting write by another process makes the
attempt fail; it is recomputed from fresh state after a short backoff.

Write modes:
- ``script``: one Lua compare-and-set round trip (version check + HSET + PEXPIRE)
- ``watch``: WATCH/MULTI/EXEC transaction, for servers without scripting

Every call is bounded by ``timeout_seconds``; timeouts and Redis errors
surface as ``StoreUnavailableError`` so the caller can apply its fail mode.
"""

import asyncio
import json
from typing import Any, Literal, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, WatchError
from redis.exceptions import TimeoutError as RedisTimeoutError

from quotaguard.core.config import settings
from quotaguard.core.logging import get_logger
from quotaguard.core.metrics import get_metrics_collector
from quotaguard.exceptions import OptimisticConflictExhaustedError, StoreUnavailableError
from quotaguard.store.base import StateDict, StateStore, UpdateFn
from quotaguard.store.redis_lua import COMPARE_AND_SET_SCRIPT
from quotaguard.store.retry import ConflictRetryPolicy

logger = get_logger(__name__)

WriteMode = Literal["script", "watch"]


def _decode_state(raw_state: Any, raw_version: Any) -> Tuple[Optional[StateDict], int]:
    """Parse the stored hash fields into ``(state, version)``."""
    version = int(raw_version) if raw_version is not None else 0
    if raw_state is None:
        return None, version
    return json.loads(raw_state), version


def _encode_state(state: StateDict) -> str:
    return json.dumps(state, separators=(",", ":"))


def _ttl_ms(ttl: Optional[float]) -> int:
    if ttl is None or ttl <= 0:
        return 0
    return max(1, int(ttl * 1000))


class RedisStateStore(StateStore):
    """Limiter state in Redis with versioned compare-and-set writes."""

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        *,
        write_mode: WriteMode = "script",
        timeout_seconds: Optional[float] = None,
        retry_policy: Optional[ConflictRetryPolicy] = None,
        node_id: Optional[str] = None,
    ):
        """Initialize the Redis state store.

        Args:
            redis_client: Optional Redis client instance (owned by the caller)
            redis_url: Redis connection URL, used when no client is given
            write_mode: ``script`` or ``watch``
            timeout_seconds: Deadline for each store call
            retry_policy: Backoff between conflicting attempts
            node_id: Name of this node when used as a shard (for logs)
        """
        if write_mode not in ("script", "watch"):
            raise ValueError(f"Unknown write mode: {write_mode}")
        self._redis = redis_client
        self._owns_client = redis_client is None
        self._redis_url = redis_url or settings.redis_url
        self.write_mode = write_mode
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.store_timeout_seconds
        )
        self.retry_policy = retry_policy or ConflictRetryPolicy(
            max_attempts=settings.optimistic_max_attempts,
            base_delay=settings.optimistic_base_delay,
            max_delay=settings.optimistic_max_delay,
        )
        self.node_id = node_id

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisStateStore":
        """Create a store with its own connection pool."""
        store = cls(redis_url=url, **kwargs)
        store._redis = aioredis.from_url(url, decode_responses=True)
        return store

    def _get_redis(self) -> Any:
        """Get or create Redis client."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    async def _bounded(self, coro: Any, key: str) -> Any:
        """Await ``coro`` within the deadline, mapping failures to StoreUnavailableError."""
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(
                "timeout", f"{key}: no answer within {self.timeout_seconds}s"
            ) from e
        except RedisTimeoutError as e:
            raise StoreUnavailableError("timeout", f"{key}: {e}") from e
        except (RedisConnectionError, ConnectionError, OSError) as e:
            raise StoreUnavailableError("connection_error", f"{key}: {e}") from e
        except RedisError as e:
            raise StoreUnavailableError("redis_error", f"{key}: {e}") from e

    async def atomic_update(
        self, key: str, fn: UpdateFn, ttl: Optional[float] = None
    ) -> StateDict:
        return await self._bounded(self._update_with_retries(key, fn, ttl), key)

    async def _update_with_retries(
        self, key: str, fn: UpdateFn, ttl: Optional[float]
    ) -> StateDict:
        redis = self._get_redis()
        ttl_ms = _ttl_ms(ttl)
        policy = self.retry_policy

        for attempt in range(policy.max_attempts):
            if self.write_mode == "watch":
                committed, new_state = await self._attempt_watch(redis, key, fn, ttl_ms)
            else:
                committed, new_state = await self._attempt_script(redis, key, fn, ttl_ms)
            if committed:
                return new_state

            await get_metrics_collector().record_conflict()
            if not policy.should_retry(attempt):
                break
            delay = policy.calculate_delay(attempt)
            logger.debug(
                f"Write conflict on {key} (attempt {attempt + 1}/{policy.max_attempts}). "
                f"Retrying in {delay * 1000:.1f}ms",
                extra={"node_id": self.node_id},
            )
            await asyncio.sleep(delay)

        logger.warning(
            f"Gave up on {key} after {policy.max_attempts} conflicting attempts",
            extra={"node_id": self.node_id, "reason": "conflict_exhausted"},
        )
        raise OptimisticConflictExhaustedError(key, policy.max_attempts)

    async def _attempt_script(
        self, redis: Any, key: str, fn: UpdateFn, ttl_ms: int
    ) -> Tuple[bool, Optional[StateDict]]:
        raw_state, raw_version = await redis.hmget(key, "state", "version")
        current, version = _decode_state(raw_state, raw_version)
        new_state = fn(current)
        result = await redis.eval(
            COMPARE_AND_SET_SCRIPT,
            1,  # Number of keys
            key,  # KEYS[1]
            version,  # ARGV[1]
            _encode_state(new_state),  # ARGV[2]
            ttl_ms,  # ARGV[3]
        )
        return bool(int(result[0])), new_state

    async def _attempt_watch(
        self, redis: Any, key: str, fn: UpdateFn, ttl_ms: int
    ) -> Tuple[bool, Optional[StateDict]]:
        async with redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                # Immediate mode until multi()
                raw_state, raw_version = await pipe.hmget(key, "state", "version")
                current, version = _decode_state(raw_state, raw_version)
                new_state = fn(current)

                pipe.multi()
                pipe.hset(key, mapping={"state": _encode_state(new_state), "version": version + 1})
                if ttl_ms > 0:
                    pipe.pexpire(key, ttl_ms)
                await pipe.execute()
                return True, new_state
            except WatchError:
                return False, None

    async def get(self, key: str) -> Optional[StateDict]:
        async def _read() -> Optional[StateDict]:
            raw_state, raw_version = await self._get_redis().hmget(key, "state", "version")
            return _decode_state(raw_state, raw_version)[0]

        return await self._bounded(_read(), key)

    async def delete(self, key: str) -> None:
        await self._bounded(self._get_redis().delete(key), key)

    async def close(self) -> None:
        """Close the Redis connection if this store created it."""
        if self._redis is not None and self._owns_client:
            try:
                await self._redis.aclose()
            except RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
