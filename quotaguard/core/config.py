import json
import re
from typing import Annotated, Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_redis_nodes(raw: Any) -> dict[str, str]:
    """Parse shard definitions into ``{node_id: redis_url}``.

    Accepts a mapping, a JSON object, or a comma/whitespace separated list of
    ``node_id=url`` pairs. Pairs without ``=`` use the URL as the node id.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(k).strip(): str(v).strip() for k, v in raw.items() if str(v).strip()}
    if isinstance(raw, (list, tuple)):
        items = [str(v).strip() for v in raw]
    else:
        raw = str(raw).strip()
        if not raw or raw in ("[]", "{}"):
            return {}
        if raw.startswith(("{", "[")):
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, (dict, list)):
                return _parse_redis_nodes(parsed)
        items = [p for p in re.split(r"[,\s]+", raw) if p]

    nodes: dict[str, str] = {}
    for item in items:
        if not item:
            continue
        if "=" in item:
            node_id, url = item.split("=", 1)
            nodes[node_id.strip()] = url.strip()
        else:
            nodes[item] = item
    return nodes


class Settings(BaseSettings):
    """Rate limiter settings loaded from environment variables.

    All settings can be configured via ``QUOTAGUARD_*`` environment variables
    or a .env file.
    """

    # Redis settings (single remote store)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Sharded remote stores: "node-a=redis://h1:6379/0,node-b=redis://h2:6379/0"
    redis_nodes: Annotated[dict[str, str], NoDecode] = {}

    @field_validator("redis_nodes", mode="before")
    @classmethod
    def decode_redis_nodes(cls, v: Any) -> dict[str, str]:
        return _parse_redis_nodes(v)

    # Remote store behaviour
    store_timeout_seconds: float = 0.25  # Deadline for one atomic update
    store_write_mode: Literal["script", "watch"] = "script"
    optimistic_max_attempts: int = 5
    optimistic_base_delay: float = 0.002
    optimistic_max_delay: float = 0.05

    # Behaviour when the store is unreachable; policies may override
    fail_mode: Literal["open", "closed"] = "open"

    # Consistent hash ring
    ring_virtual_nodes: int = 100

    # State lifecycle
    state_ttl_multiplier: float = 2.0  # Idle state expires after horizon x multiplier
    local_max_entries: int = 100_000
    key_prefix: str = "quotaguard"

    # Policy configuration file (JSON)
    policy_file: str | None = None

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("store_timeout_seconds", "optimistic_base_delay", "optimistic_max_delay")
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("Duration values must be positive")
        return v

    @field_validator("optimistic_max_attempts", "ring_virtual_nodes", "local_max_entries")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        """Validate counts are at least 1."""
        if v < 1:
            raise ValueError("Count values must be at least 1")
        return v

    @field_validator("state_ttl_multiplier")
    @classmethod
    def validate_ttl_multiplier(cls, v: float) -> float:
        """Idle state must outlive at least one full horizon."""
        if v < 1:
            raise ValueError("state_ttl_multiplier must be at least 1")
        return v

    model_config = SettingsConfigDict(
        env_prefix="QUOTAGUARD_", env_file=".env", extra="ignore"
    )


# Global settings instance
settings = Settings()
