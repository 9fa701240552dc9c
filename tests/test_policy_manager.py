"""Tests for tier and policy resolution."""

import json
import threading
import time
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from quotaguard.exceptions import PolicyNotFoundError
from quotaguard.policy.models import Policy
from quotaguard.services.policy_manager import (
    TierPolicyManager,
    get_policy_manager,
    reset_policy_manager,
)


@pytest.fixture
def document():
    return {
        "policies": [
            {"policy_id": "free-default", "capacity": 10, "rate_per_second": 1, "tier": "free"},
            {"policy_id": "free-search", "capacity": 2, "rate_per_second": 1, "tier": "free"},
            {"policy_id": "pro-default", "capacity": 100, "rate_per_second": 10, "tier": "pro"},
            {"policy_id": "bob-upload", "capacity": 1, "rate_per_second": 0.1},
            {"policy_id": "internal", "bypass": True},
        ],
        "tiers": {
            "free": {"*": "free-default", "/search": "free-search"},
            "pro": {"*": "pro-default"},
            "internal": {"*": "internal"},
        },
        "clients": {"carol": "pro", "ops": "internal"},
        "overrides": {"bob": {"/upload": "bob-upload"}},
        "bypass_clients": ["healthcheck"],
        "default_tier": "free",
    }


@pytest.fixture
def manager(document):
    return TierPolicyManager(document)


class TestResolve:
    """Tests for TierPolicyManager.resolve."""

    def test_default_tier_resource_mapping(self, manager):
        assert manager.resolve("alice", "/search").policy_id == "free-search"

    def test_default_tier_wildcard(self, manager):
        assert manager.resolve("alice", "/chat").policy_id == "free-default"

    def test_assigned_tier(self, manager):
        assert manager.resolve("carol", "/search").policy_id == "pro-default"
        assert manager.tier_of("carol") == "pro"

    def test_override_wins_over_tier(self, manager):
        assert manager.resolve("bob", "/upload").policy_id == "bob-upload"
        assert manager.resolve("bob", "/chat").policy_id == "free-default"

    def test_no_tier_and_no_default(self, document):
        document["default_tier"] = None
        manager = TierPolicyManager(document)

        with pytest.raises(PolicyNotFoundError):
            manager.resolve("alice", "/chat")

    def test_tier_without_matching_resource(self, document):
        document["tiers"]["pro"] = {"/only": "pro-default"}
        manager = TierPolicyManager(document)

        with pytest.raises(PolicyNotFoundError):
            manager.resolve("carol", "/chat")

    def test_get_policy(self, manager):
        assert manager.get_policy("pro-default").capacity == 100
        with pytest.raises(PolicyNotFoundError):
            manager.get_policy("missing")

    def test_bypass_clients(self, manager):
        assert manager.is_bypass_client("healthcheck") is True
        assert manager.is_bypass_client("alice") is False

    def test_empty_manager(self):
        manager = TierPolicyManager()
        with pytest.raises(PolicyNotFoundError):
            manager.resolve("alice", "/chat")


class TestChangeEvents:
    """Tests for configuration updates."""

    def test_each_change_swaps_the_snapshot(self, manager):
        before = manager.snapshot

        manager.assign_tier("alice", "pro")

        assert manager.snapshot is not before
        assert manager.snapshot.generation == before.generation + 1
        assert before.document.clients.get("alice") is None
        assert manager.resolve("alice", "/chat").policy_id == "pro-default"

    def test_invalid_change_keeps_current_snapshot(self, manager):
        before = manager.snapshot

        with pytest.raises(ValidationError):
            manager.assign_tier("alice", "platinum")

        assert manager.snapshot is before

    def test_upsert_new_policy(self, manager):
        manager.upsert_policy(Policy(policy_id="burst", capacity=50, rate_per_second=5))
        manager.set_override("alice", "/burst", "burst")

        assert manager.resolve("alice", "/burst").policy_id == "burst"

    def test_upsert_changed_policy_bumps_version(self, manager):
        stored = manager.upsert_policy(
            Policy(policy_id="free-default", capacity=20, rate_per_second=1, tier="free")
        )

        assert stored.version == 2
        assert manager.get_policy("free-default").capacity == 20

    def test_upsert_identical_policy_keeps_version(self, manager):
        current = manager.get_policy("free-default")
        assert manager.upsert_policy(current).version == 1

    def test_upsert_same_definition_twice_keeps_version(self, manager):
        changed = Policy(policy_id="free-default", capacity=20, rate_per_second=1, tier="free")

        first = manager.upsert_policy(changed)
        second = manager.upsert_policy(changed)

        assert first.version == 2
        assert second.version == 2
        assert manager.get_policy("free-default").version == 2

    def test_upsert_lower_version_of_current_definition_keeps_stored(self, manager):
        manager.upsert_policy(
            Policy(policy_id="free-default", capacity=20, rate_per_second=1, tier="free", version=4)
        )

        stored = manager.upsert_policy(
            Policy(policy_id="free-default", capacity=20, rate_per_second=1, tier="free")
        )

        assert stored.version == 4

    def test_upsert_with_explicit_version(self, manager):
        stored = manager.upsert_policy(
            Policy(policy_id="free-default", capacity=20, rate_per_second=1, version=5)
        )
        assert stored.version == 5

    def test_remove_policy_drops_mappings(self, manager):
        manager.remove_policy("free-search")

        with pytest.raises(PolicyNotFoundError):
            manager.get_policy("free-search")
        assert manager.resolve("alice", "/search").policy_id == "free-default"

    def test_remove_unknown_policy(self, manager):
        with pytest.raises(PolicyNotFoundError):
            manager.remove_policy("missing")

    def test_set_tier_policy(self, manager):
        manager.set_tier_policy("pro", "/search", "free-search")
        assert manager.resolve("carol", "/search").policy_id == "free-search"

    def test_bypass_client_changes(self, manager):
        manager.add_bypass_client("alice")
        assert manager.is_bypass_client("alice") is True

        manager.remove_bypass_client("alice")
        assert manager.is_bypass_client("alice") is False

    def test_load_file(self, tmp_path, document):
        path = tmp_path / "policies.json"
        path.write_text(json.dumps(document))
        manager = TierPolicyManager()

        manager.load_file(path)

        assert manager.resolve("carol", "/x").policy_id == "pro-default"

    def test_load_rejects_invalid_document(self, manager, document):
        document["tiers"]["free"]["*"] = "missing"

        with pytest.raises(ValidationError):
            manager.load(document)

        assert manager.resolve("alice", "/chat").policy_id == "free-default"


class TestConcurrentChanges:
    """Concurrent change events must not lose each other's updates."""

    def test_concurrent_writers_all_land(self, manager):
        original_swap = manager._swap

        def slow_swap(document, event):
            time.sleep(0.005)
            original_swap(document, event)

        clients = [f"client-{i}" for i in range(16)]
        barrier = threading.Barrier(len(clients))

        def writer(client_id):
            barrier.wait()
            manager.assign_tier(client_id, "pro")

        with patch.object(manager, "_swap", side_effect=slow_swap):
            threads = [threading.Thread(target=writer, args=(c,)) for c in clients]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        document = manager.snapshot.document
        assert {c: document.clients[c] for c in clients} == {c: "pro" for c in clients}
        assert document.clients["carol"] == "pro"

    def test_mixed_concurrent_changes(self, manager):
        barrier = threading.Barrier(3)

        def run(change):
            barrier.wait()
            change()

        changes = [
            lambda: manager.assign_tier("dave", "pro"),
            lambda: manager.add_bypass_client("monitor"),
            lambda: manager.set_override("erin", "/upload", "bob-upload"),
        ]
        threads = [threading.Thread(target=run, args=(c,)) for c in changes]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert manager.tier_of("dave") == "pro"
        assert manager.is_bypass_client("monitor") is True
        assert manager.resolve("erin", "/upload").policy_id == "bob-upload"


class TestGlobalManager:
    """Tests for the global policy manager."""

    def test_singleton_and_reset(self):
        reset_policy_manager()
        first = get_policy_manager()

        assert get_policy_manager() is first

        reset_policy_manager()
        assert get_policy_manager() is not first
        reset_policy_manager()
