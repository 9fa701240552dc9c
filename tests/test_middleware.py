"""Tests for the rate limiting middleware."""

import hashlib
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from quotaguard.algorithms.base import Verdict
from quotaguard.core.config import Settings
from quotaguard.core.metrics import MetricsCollector
from quotaguard.exceptions import PolicyNotFoundError
from quotaguard.middleware.rate_limit import RateLimitMiddleware, get_client_key
from quotaguard.services.engine import DecisionEngine
from quotaguard.services.policy_manager import TierPolicyManager
from quotaguard.store import InMemoryStateStore

DOCUMENT = {
    "policies": [
        {"policy_id": "api", "capacity": 2, "rate_per_second": 0.001, "tier": "free"},
    ],
    "tiers": {"free": {"/items": "api"}},
    "default_tier": "free",
}


def create_app(engine, **kwargs) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, engine=engine, **kwargs)

    @app.get("/items")
    async def items():
        return {"items": []}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/unmapped")
    async def unmapped():
        return {}

    return app


@pytest.fixture
def engine():
    return DecisionEngine(
        InMemoryStateStore(),
        TierPolicyManager(DOCUMENT),
        settings=Settings(),
        metrics=MetricsCollector(),
    )


class TestGetClientKey:
    """Tests for deriving client keys from requests."""

    def make_request(self, headers=None, host="10.0.0.1"):
        request = MagicMock()
        request.headers = headers or {}
        request.client.host = host
        return request

    def test_api_key_is_hashed(self):
        request = self.make_request({"Authorization": "Bearer sk-secret"})

        key = get_client_key(request)

        expected = hashlib.sha256(b"sk-secret").hexdigest()[:32]
        assert key == f"apikey:{expected}"
        assert "sk-secret" not in key

    def test_falls_back_to_ip(self):
        key = get_client_key(self.make_request())
        assert key == f"ip:{hashlib.sha256(b'10.0.0.1').hexdigest()[:32]}"

    def test_forwarded_for_first_hop(self):
        request = self.make_request({"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})
        key = get_client_key(request)
        assert key == f"ip:{hashlib.sha256(b'203.0.113.5').hexdigest()[:32]}"

    def test_rejects_oversized_api_key(self):
        request = self.make_request({"Authorization": "Bearer " + "x" * 600})
        with pytest.raises(ValueError):
            get_client_key(request)


class TestRateLimitMiddleware:
    """Tests for RateLimitMiddleware."""

    def test_allowed_requests_carry_headers(self, engine):
        client = TestClient(create_app(engine))

        response = client.get("/items")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"
        assert "X-RateLimit-Reset" in response.headers

    def test_denied_request_returns_429(self, engine):
        client = TestClient(create_app(engine))

        for _ in range(2):
            assert client.get("/items").status_code == 200
        response = client.get("/items")

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limit_exceeded"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert int(response.headers["Retry-After"]) > 0

    def test_clients_are_limited_separately(self, engine):
        client = TestClient(create_app(engine))

        for _ in range(3):
            client.get("/items", headers={"Authorization": "Bearer key-a"})

        response = client.get("/items", headers={"Authorization": "Bearer key-b"})
        assert response.status_code == 200

    def test_exempt_paths_skip_the_check(self):
        engine = MagicMock()
        engine.check_request = AsyncMock()
        client = TestClient(create_app(engine, exempt_paths=["/health"]))

        response = client.get("/health")

        assert response.status_code == 200
        engine.check_request.assert_not_awaited()

    def test_unmapped_path_reports_configuration_error(self, engine):
        client = TestClient(create_app(engine))

        response = client.get("/unmapped")

        assert response.status_code == PolicyNotFoundError.status_code
        assert response.json()["error"] == "PolicyNotFoundError"

    def test_invalid_api_key_returns_400(self, engine):
        client = TestClient(create_app(engine))

        response = client.get("/items", headers={"Authorization": "Bearer " + "x" * 600})

        assert response.status_code == 400

    def test_custom_client_resolver(self):
        engine = MagicMock()
        engine.check_request = AsyncMock(
            return_value=Verdict(allowed=True, limit=5, remaining=4, reset_at=0.0)
        )
        client = TestClient(
            create_app(engine, client_resolver=lambda request: request.headers["X-Tenant"])
        )

        client.get("/items", headers={"X-Tenant": "acme"})

        engine.check_request.assert_awaited_once_with("acme", "/items")
