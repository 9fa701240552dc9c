"""Decision engine: the public entry point of the limiter.

A check resolves the policy, short-circuits bypassed traffic, and otherwise
runs the policy's algorithm inside one atomic state update. When the state
store cannot be used, the policy's fail mode decides the verdict:

- fail-open (default): the request is allowed and the verdict is marked degraded
- fail-closed: the request is denied and the verdict is marked degraded
"""

import dataclasses
from typing import Any, Callable, Dict, Optional

from quotaguard.algorithms import get_strategy
from quotaguard.algorithms.base import Verdict
from quotaguard.core.config import Settings
from quotaguard.core.config import settings as default_settings
from quotaguard.core.logging import get_log_context, get_logger
from quotaguard.core.metrics import MetricsCollector, get_metrics_collector
from quotaguard.core.utils import wall_clock
from quotaguard.exceptions import InvalidCostError, StoreUnavailableError
from quotaguard.policy.models import Algorithm, FailMode, Policy
from quotaguard.services.load_monitor import LoadMonitor, get_load_monitor
from quotaguard.services.policy_manager import TierPolicyManager
from quotaguard.store.base import StateDict, StateStore
from quotaguard.store.memory import InMemoryStateStore
from quotaguard.store.redis_store import RedisStateStore
from quotaguard.store.retry import ConflictRetryPolicy
from quotaguard.store.sharded import ShardedStateStore

logger = get_logger(__name__)

# Retry hint on fail-closed verdicts; the outage length is unknown
DEGRADED_RETRY_AFTER_SECONDS = 1.0


def _validate_cost(cost: Any) -> int:
    # bool is an int subclass but never a meaningful cost
    if isinstance(cost, bool) or not isinstance(cost, int) or cost <= 0:
        raise InvalidCostError(cost)
    return cost


class DecisionEngine:
    """Rate limit decisions over a state store and a policy manager.

    Usage:
        engine = create_engine()
        verdict = await engine.check("client-42", "free-api")
        if not verdict.allowed:
            ...  # reject, using verdict.to_headers()
    """

    def __init__(
        self,
        store: StateStore,
        manager: TierPolicyManager,
        *,
        settings: Optional[Settings] = None,
        load_monitor: Optional[LoadMonitor] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = wall_clock,
    ):
        """Initialize the engine.

        Args:
            store: Where per-client limiter state lives
            manager: Policy lookup and tier resolution
            settings: Key prefix, TTL multiplier and default fail mode
            load_monitor: Source of the system load for adaptive policies
            metrics: Decision counters (global collector if omitted)
            clock: Wall-clock time source in epoch seconds
        """
        self.store = store
        self.manager = manager
        self._settings = settings or default_settings
        self._load_monitor = load_monitor
        self._metrics = metrics
        self._clock = clock

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics or get_metrics_collector()

    @property
    def load_monitor(self) -> LoadMonitor:
        return self._load_monitor or get_load_monitor()

    def state_key(self, client_key: str, policy: Policy) -> str:
        return policy.state_key(client_key, prefix=self._settings.key_prefix)

    async def check(self, client_key: str, policy_id: str, cost: int = 1) -> Verdict:
        """Decide whether ``client_key`` may spend ``cost`` units under ``policy_id``.

        Raises:
            InvalidCostError: If cost is not a positive integer or exceeds the policy limit
            PolicyNotFoundError: If the policy id is unknown
        """
        cost = _validate_cost(cost)
        policy = self.manager.get_policy(policy_id)
        return await self._enforce(client_key, policy, cost)

    async def check_request(self, client_id: str, resource: str, cost: int = 1) -> Verdict:
        """Like ``check``, with the policy resolved from the client's tier and overrides."""
        cost = _validate_cost(cost)
        policy = self.manager.resolve(client_id, resource)
        return await self._enforce(client_id, policy, cost)

    async def reset(self, client_key: str, policy_id: str) -> None:
        """Delete the client's state under the current version of the policy."""
        policy = self.manager.get_policy(policy_id)
        await self.store.delete(self.state_key(client_key, policy))
        logger.info(
            f"Rate limit state reset for {client_key}",
            extra=get_log_context(client_key=client_key, policy_id=policy_id),
        )

    async def close(self) -> None:
        await self.store.close()

    async def _enforce(self, client_key: str, policy: Policy, cost: int) -> Verdict:
        if policy.bypass or self.manager.is_bypass_client(client_key):
            await self.metrics.record_bypass()
            return Verdict(
                allowed=True,
                limit=policy.limit,
                remaining=int(policy.limit),
                reset_at=self._clock(),
                policy_id=policy.policy_id,
            )

        if cost > policy.limit:
            raise InvalidCostError(cost, policy.limit)

        strategy = get_strategy(policy.algorithm)
        system_load = (
            self.load_monitor.current() if policy.algorithm == Algorithm.ADAPTIVE else None
        )
        outcome: Dict[str, Verdict] = {}

        def update(raw: Optional[StateDict]) -> StateDict:
            # May run more than once under optimistic concurrency; the verdict
            # of the committed run is the one kept
            new_state, verdict = strategy.decide(
                strategy.load_state(raw),
                policy,
                cost,
                self._clock(),
                system_load=system_load,
            )
            outcome["verdict"] = verdict
            return new_state.to_dict()

        try:
            await self.store.atomic_update(
                self.state_key(client_key, policy),
                update,
                policy.state_ttl(self._settings.state_ttl_multiplier),
            )
        except StoreUnavailableError as e:
            return await self._degraded(client_key, policy, cost, e.reason, str(e))
        except Exception as e:
            logger.exception(
                f"Unexpected rate limit error: {e}",
                extra=get_log_context(client_key=client_key, policy_id=policy.policy_id),
            )
            return await self._degraded(client_key, policy, cost, "unexpected", str(e))

        verdict = dataclasses.replace(outcome["verdict"], policy_id=policy.policy_id)
        await self.metrics.record_decision(policy.policy_id, verdict.allowed)
        return verdict

    async def _degraded(
        self, client_key: str, policy: Policy, cost: int, reason: str, detail: str
    ) -> Verdict:
        """Verdict for a check whose state could not be read or written."""
        fail_mode = policy.fail_mode or FailMode(self._settings.fail_mode)
        now = self._clock()
        await self.metrics.record_degraded(reason)
        context = get_log_context(
            client_key=client_key,
            policy_id=policy.policy_id,
            algorithm=policy.algorithm.value,
            reason=reason,
        )

        if fail_mode == FailMode.CLOSED:
            logger.warning(
                f"Rate limiting fail-closed triggered due to {reason}: {detail}. "
                "Request denied.",
                extra=context,
            )
            return Verdict(
                allowed=False,
                limit=policy.limit,
                remaining=0,
                reset_at=now + DEGRADED_RETRY_AFTER_SECONDS,
                retry_after=DEGRADED_RETRY_AFTER_SECONDS,
                policy_id=policy.policy_id,
                degraded=True,
            )

        logger.warning(
            f"Rate limiting fail-open triggered due to {reason}: {detail}. "
            "Request allowed without rate limit check.",
            extra=context,
        )
        return Verdict(
            allowed=True,
            limit=policy.limit,
            remaining=max(0, int(policy.limit - cost)),
            reset_at=now,
            policy_id=policy.policy_id,
            degraded=True,
        )


def build_store(settings: Settings) -> StateStore:
    """State store selected by the settings.

    - ``redis_nodes`` set: Redis nodes sharded by consistent hashing
    - ``redis_enabled``: a single Redis server at ``redis_url``
    - otherwise: in-process memory
    """

    def _redis(url: str, node_id: Optional[str] = None) -> RedisStateStore:
        return RedisStateStore.from_url(
            url,
            write_mode=settings.store_write_mode,
            timeout_seconds=settings.store_timeout_seconds,
            retry_policy=ConflictRetryPolicy(
                max_attempts=settings.optimistic_max_attempts,
                base_delay=settings.optimistic_base_delay,
                max_delay=settings.optimistic_max_delay,
            ),
            node_id=node_id,
        )

    if settings.redis_nodes:
        logger.info(
            f"Using sharded Redis state store over {len(settings.redis_nodes)} nodes "
            f"({settings.store_write_mode} mode)"
        )
        return ShardedStateStore(
            {node_id: _redis(url, node_id) for node_id, url in settings.redis_nodes.items()},
            virtual_nodes=settings.ring_virtual_nodes,
        )
    if settings.redis_enabled:
        logger.info(f"Using Redis state store ({settings.store_write_mode} mode)")
        return _redis(settings.redis_url)
    logger.info("Using in-memory state store")
    return InMemoryStateStore(max_entries=settings.local_max_entries)


def create_engine(
    settings: Optional[Settings] = None,
    manager: Optional[TierPolicyManager] = None,
    *,
    store: Optional[StateStore] = None,
    load_monitor: Optional[LoadMonitor] = None,
) -> DecisionEngine:
    """Create a decision engine from settings.

    Args:
        settings: Configuration (global settings if omitted)
        manager: Policy manager; a new one loaded from ``policy_file`` if omitted
        store: State store; built from the settings if omitted
        load_monitor: Load source for adaptive policies (global monitor if omitted)
    """
    settings = settings or default_settings
    if manager is None:
        manager = TierPolicyManager()
        if settings.policy_file:
            manager.load_file(settings.policy_file)
    return DecisionEngine(
        store or build_store(settings),
        manager,
        settings=settings,
        load_monitor=load_monitor,
    )
