"""Tier and policy resolution.

Maps a ``(client_id, resource)`` pair to the policy that governs it:

1. Per-client override for the resource (then the client's ``"*"`` override)
2. The client's assigned tier, or ``default_tier`` for unassigned clients
3. Within the tier, the mapping for the resource, falling back to ``"*"``

Configuration is held as an immutable snapshot. Lookups read the current
snapshot without I/O or locking; change events build and validate a new
document and swap the snapshot in one assignment.
"""

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Union

from quotaguard.core.logging import get_logger
from quotaguard.exceptions import PolicyNotFoundError
from quotaguard.policy.models import Policy, PolicyDocument

logger = get_logger(__name__)

WILDCARD_RESOURCE = "*"


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable view of the policy configuration."""

    document: PolicyDocument = field(default_factory=PolicyDocument)
    policies: Mapping[str, Policy] = field(default_factory=lambda: MappingProxyType({}))
    bypass_clients: FrozenSet[str] = frozenset()
    generation: int = 0

    @classmethod
    def from_document(cls, document: PolicyDocument, generation: int) -> "PolicySnapshot":
        return cls(
            document=document,
            policies=MappingProxyType({p.policy_id: p for p in document.policies}),
            bypass_clients=frozenset(document.bypass_clients),
            generation=generation,
        )


class TierPolicyManager:
    """Resolves policies for clients and holds the policy configuration.

    Usage:
        manager = TierPolicyManager()
        manager.load({"policies": [...], "tiers": {...}, "default_tier": "free"})
        policy = manager.resolve("client-42", "/v1/search")
    """

    def __init__(self, document: Optional[Union[PolicyDocument, Dict[str, Any]]] = None):
        self._write_lock = threading.Lock()
        self._snapshot = PolicySnapshot()
        if document is not None:
            self.load(document)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> PolicySnapshot:
        return self._snapshot

    def get_policy(self, policy_id: str) -> Policy:
        """Policy by id.

        Raises:
            PolicyNotFoundError: If no policy has this id
        """
        policy = self._snapshot.policies.get(policy_id)
        if policy is None:
            raise PolicyNotFoundError(policy_id)
        return policy

    def is_bypass_client(self, client_id: str) -> bool:
        return client_id in self._snapshot.bypass_clients

    def tier_of(self, client_id: str) -> Optional[str]:
        document = self._snapshot.document
        return document.clients.get(client_id, document.default_tier)

    def resolve(self, client_id: str, resource: str = WILDCARD_RESOURCE) -> Policy:
        """Policy governing ``client_id`` for ``resource``.

        Raises:
            PolicyNotFoundError: If nothing maps the pair to a policy
        """
        snapshot = self._snapshot
        document = snapshot.document

        overrides = document.overrides.get(client_id, {})
        policy_id = overrides.get(resource) or overrides.get(WILDCARD_RESOURCE)

        if policy_id is None:
            tier = document.clients.get(client_id, document.default_tier)
            if tier is None:
                raise PolicyNotFoundError(
                    resource,
                    f"No tier assigned to client {client_id!r} and no default tier configured",
                )
            mapping = document.tiers.get(tier, {})
            policy_id = mapping.get(resource) or mapping.get(WILDCARD_RESOURCE)
            if policy_id is None:
                raise PolicyNotFoundError(
                    resource, f"Tier {tier!r} has no policy for resource {resource!r}"
                )

        return snapshot.policies[policy_id]

    # ------------------------------------------------------------------
    # Change events
    # ------------------------------------------------------------------

    def _swap(self, document: PolicyDocument, event: str) -> None:
        self._snapshot = PolicySnapshot.from_document(
            document, self._snapshot.generation + 1
        )
        logger.info(
            f"Policy configuration updated ({event}): {len(document.policies)} policies, "
            f"{len(document.tiers)} tiers, generation {self._snapshot.generation}"
        )

    def _modify(self, event: str, build: Callable[[PolicyDocument], Dict[str, Any]]) -> None:
        """Apply the changes ``build`` derives from the current document and swap.

        ``build`` runs under the write lock, so concurrent writers each see
        the previous writer's result. The new document is fully validated;
        an invalid change leaves the current snapshot in place.
        """
        with self._write_lock:
            data = self._snapshot.document.model_dump()
            data.update(build(self._snapshot.document))
            self._swap(PolicyDocument.model_validate(data), event)

    def load(self, document: Union[PolicyDocument, Dict[str, Any]]) -> None:
        """Replace the whole configuration."""
        if not isinstance(document, PolicyDocument):
            document = PolicyDocument.model_validate(document)
        with self._write_lock:
            self._swap(document, "load")

    def load_file(self, path: Union[str, Path]) -> None:
        """Replace the whole configuration from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        self.load(data)
        logger.info(f"Loaded policy configuration from {path}")

    def upsert_policy(self, policy: Policy) -> Policy:
        """Add or replace a policy.

        Replacing a policy with different parameters but without a higher
        version bumps the version, so existing client state is not read
        under the new parameters. Re-applying an unchanged definition keeps
        the stored policy and its version.

        Returns:
            The policy as stored
        """
        stored = policy

        def build(document: PolicyDocument) -> Dict[str, Any]:
            nonlocal stored
            stored = policy
            existing = next(
                (p for p in document.policies if p.policy_id == policy.policy_id), None
            )
            if existing is not None and policy.version <= existing.version:
                if existing.model_copy(update={"version": policy.version}) == policy:
                    stored = existing
                else:
                    stored = policy.model_copy(update={"version": existing.version + 1})
            policies = [p for p in document.policies if p.policy_id != policy.policy_id]
            policies.append(stored)
            return {"policies": [p.model_dump() for p in policies]}

        self._modify("upsert_policy", build)
        return stored

    def remove_policy(self, policy_id: str) -> None:
        """Remove a policy together with the mappings that refer to it."""

        def _without(mapping: Dict[str, Dict[str, str]]) -> Dict[str, Dict[str, str]]:
            return {
                owner: {r: p for r, p in resources.items() if p != policy_id}
                for owner, resources in mapping.items()
            }

        def build(document: PolicyDocument) -> Dict[str, Any]:
            if all(p.policy_id != policy_id for p in document.policies):
                raise PolicyNotFoundError(policy_id)
            return {
                "policies": [p.model_dump() for p in document.policies if p.policy_id != policy_id],
                "tiers": _without(document.tiers),
                "overrides": _without(document.overrides),
            }

        self._modify("remove_policy", build)

    def assign_tier(self, client_id: str, tier: str) -> None:
        def build(document: PolicyDocument) -> Dict[str, Any]:
            return {"clients": {**document.clients, client_id: tier}}

        self._modify("assign_tier", build)

    def set_tier_policy(self, tier: str, resource: str, policy_id: str) -> None:
        def build(document: PolicyDocument) -> Dict[str, Any]:
            tiers = {t: dict(m) for t, m in document.tiers.items()}
            tiers.setdefault(tier, {})[resource] = policy_id
            return {"tiers": tiers}

        self._modify("set_tier_policy", build)

    def set_override(self, client_id: str, resource: str, policy_id: str) -> None:
        def build(document: PolicyDocument) -> Dict[str, Any]:
            overrides = {c: dict(m) for c, m in document.overrides.items()}
            overrides.setdefault(client_id, {})[resource] = policy_id
            return {"overrides": overrides}

        self._modify("set_override", build)

    def add_bypass_client(self, client_id: str) -> None:
        if client_id in self._snapshot.bypass_clients:
            return

        def build(document: PolicyDocument) -> Dict[str, Any]:
            bypass = list(document.bypass_clients)
            if client_id not in bypass:
                bypass.append(client_id)
            return {"bypass_clients": bypass}

        self._modify("add_bypass_client", build)

    def remove_bypass_client(self, client_id: str) -> None:
        def build(document: PolicyDocument) -> Dict[str, Any]:
            return {"bypass_clients": [c for c in document.bypass_clients if c != client_id]}

        self._modify("remove_bypass_client", build)


# Global policy manager instance
_policy_manager: Optional[TierPolicyManager] = None


def get_policy_manager() -> TierPolicyManager:
    """Get or create the global policy manager instance."""
    global _policy_manager
    if _policy_manager is None:
        _policy_manager = TierPolicyManager()
    return _policy_manager


def reset_policy_manager() -> None:
    """Reset the global policy manager (for testing)."""
    global _policy_manager
    _policy_manager = None
