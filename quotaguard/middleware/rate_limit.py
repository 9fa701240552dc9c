"""Rate limiting middleware for Starlette/FastAPI applications.

Maps each request to a client key, asks the decision engine for a verdict on
the request path and turns the verdict into a 429 response or rate limit
headers on the normal response.
"""

import hashlib
from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from quotaguard.core.logging import get_logger
from quotaguard.exceptions import QuotaGuardError
from quotaguard.services.engine import DecisionEngine

logger = get_logger(__name__)

MAX_API_KEY_LENGTH = 512

ClientResolver = Callable[[Request], str]


def get_client_key(request: Request) -> str:
    """Get rate limit key for the request.

    Uses API key if available, otherwise falls back to IP address.
    Both are hashed with SHA-256 so raw keys and addresses never reach
    the state store or the logs.

    Args:
        request: Incoming request

    Returns:
        Client key string (hashed, no sensitive data exposed)

    Raises:
        ValueError: If the API key is longer than MAX_API_KEY_LENGTH
    """
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        api_key = auth[7:].strip()
        if len(api_key) > MAX_API_KEY_LENGTH:
            raise ValueError(f"API key too long (max {MAX_API_KEY_LENGTH} characters)")
        # 32 hex chars (128 bits) for collision resistance
        key_hash = hashlib.sha256(api_key.encode()).hexdigest()[:32]
        return f"apikey:{key_hash}"

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else "unknown"
    ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:32]
    return f"ip:{ip_hash}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on requests.

    The policy is resolved per client and request path through the
    engine's tier/policy manager.
    """

    def __init__(
        self,
        app,
        engine: DecisionEngine,
        client_resolver: Optional[ClientResolver] = None,
        exempt_paths: Iterable[str] = (),
    ):
        super().__init__(app)
        self.engine = engine
        self.client_resolver = client_resolver or get_client_key
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        path = request.url.path
        if path in self.exempt_paths:
            return await call_next(request)

        try:
            client_key = self.client_resolver(request)
        except ValueError as e:
            return JSONResponse(
                status_code=400,
                content={"error": "invalid_client_key", "message": str(e)},
            )

        try:
            verdict = await self.engine.check_request(client_key, path)
        except QuotaGuardError as e:
            logger.error(f"Rate limit check failed for {path}: {e.message}")
            return JSONResponse(
                status_code=e.status_code,
                content={"error": type(e).__name__, "message": e.message},
            )

        headers = verdict.to_headers()
        if not verdict.allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": "Rate limit exceeded. Please try again later.",
                    "retry_after": verdict.retry_after,
                },
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
