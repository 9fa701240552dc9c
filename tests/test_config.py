"""Tests for settings parsing."""

import pytest
from pydantic import ValidationError

from quotaguard.core.config import Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("QUOTAGUARD_REDIS_NODES", raising=False)
        settings = Settings(_env_file=None)

        assert settings.redis_enabled is False
        assert settings.redis_nodes == {}
        assert settings.store_timeout_seconds == 0.25
        assert settings.store_write_mode == "script"
        assert settings.optimistic_max_attempts == 5
        assert settings.fail_mode == "open"
        assert settings.ring_virtual_nodes == 100
        assert settings.state_ttl_multiplier == 2.0
        assert settings.key_prefix == "quotaguard"

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("QUOTAGUARD_FAIL_MODE", "closed")
        monkeypatch.setenv("QUOTAGUARD_STORE_WRITE_MODE", "watch")
        monkeypatch.setenv("QUOTAGUARD_OPTIMISTIC_MAX_ATTEMPTS", "9")

        settings = Settings(_env_file=None)

        assert settings.fail_mode == "closed"
        assert settings.store_write_mode == "watch"
        assert settings.optimistic_max_attempts == 9

    @pytest.mark.parametrize(
        "raw",
        [
            "a=redis://h1:6379/0,b=redis://h2:6379/0",
            "a=redis://h1:6379/0 b=redis://h2:6379/0",
            '{"a": "redis://h1:6379/0", "b": "redis://h2:6379/0"}',
            '["a=redis://h1:6379/0", "b=redis://h2:6379/0"]',
        ],
    )
    def test_redis_nodes_from_environment(self, monkeypatch, raw):
        monkeypatch.setenv("QUOTAGUARD_REDIS_NODES", raw)

        settings = Settings(_env_file=None)

        assert settings.redis_nodes == {"a": "redis://h1:6379/0", "b": "redis://h2:6379/0"}

    def test_redis_nodes_without_ids(self):
        settings = Settings(_env_file=None, redis_nodes="redis://h1:6379/0")
        assert settings.redis_nodes == {"redis://h1:6379/0": "redis://h1:6379/0"}

    def test_empty_redis_nodes(self, monkeypatch):
        monkeypatch.setenv("QUOTAGUARD_REDIS_NODES", "")
        assert Settings(_env_file=None).redis_nodes == {}

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"store_timeout_seconds": 0},
            {"optimistic_base_delay": -1},
            {"optimistic_max_attempts": 0},
            {"ring_virtual_nodes": 0},
            {"local_max_entries": 0},
            {"state_ttl_multiplier": 0.5},
            {"fail_mode": "maybe"},
            {"store_write_mode": "lua"},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **kwargs)
