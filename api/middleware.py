"""
API Security Module

Provides rate limiting and request logging for the sign-in API:
- Tiered rate limiting based on endpoint sensitivity
- Per-client tracking keyed on the caller's address
"""

import os
import time
import logging
from dataclasses import dataclass, field
from collections import defaultdict
from typing import Any, Callable

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("signon.api_security")

# =============================================================================
# Rate Limiting Configuration
# =============================================================================

@dataclass
class RateLimitConfig:
    """Configuration for rate limiting a specific endpoint tier."""
    requests_per_minute: int
    burst_limit: int  # Max requests in a 5-second window
    block_duration_seconds: int = 60  # How long to block after limit exceeded


RATE_LIMIT_TIERS: dict[str, RateLimitConfig] = {
    # Health and session reads
    "high": RateLimitConfig(requests_per_minute=120, burst_limit=30),
    "standard": RateLimitConfig(requests_per_minute=30, burst_limit=10),
    # Sign-in attempts and callbacks
    "sensitive": RateLimitConfig(requests_per_minute=10, burst_limit=5, block_duration_seconds=120),
}

ENDPOINT_TIERS: dict[str, str] = {
    "/": "high",
    "/healthz": "high",
    "/auth/session": "high",
    "/auth/providers": "high",
    "/auth/signout": "standard",
    "/auth/signin/": "sensitive",  # Prefix match
    "/auth/callback/": "sensitive",  # Prefix match
}

# Static file prefixes to skip entirely
SKIP_PREFIXES: tuple[str, ...] = ("/static/", "/favicon")


def _get_endpoint_tier(path: str) -> str:
    """Determine the rate limit tier for a given endpoint path."""
    if path in ENDPOINT_TIERS:
        return ENDPOINT_TIERS[path]
    for prefix, tier in ENDPOINT_TIERS.items():
        if prefix.endswith("/") and path.startswith(prefix):
            return tier
    return "standard"


# =============================================================================
# Rate Limiter Implementation
# =============================================================================

@dataclass
class RequestWindow:
    """Tracks requests in a time window."""
    timestamps: list[float] = field(default_factory=list)
    blocked_until: float = 0.0


class RateLimiter:
    """In-memory rate limiter with per-client tracking."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        # Key: (client_id, tier) -> RequestWindow
        self._windows: dict[tuple[str, str], RequestWindow] = defaultdict(RequestWindow)
        self._clock = clock
        self._cleanup_interval = 60.0
        self._last_cleanup = clock()

    def _cleanup_old_entries(self, now: float) -> None:
        """Remove stale entries to prevent memory growth."""
        if now - self._last_cleanup < self._cleanup_interval:
            return

        cutoff = now - 120  # Keep 2 minutes of history
        stale_keys = [
            key for key, window in self._windows.items()
            if window.blocked_until < now and (not window.timestamps or window.timestamps[-1] < cutoff)
        ]
        for key in stale_keys:
            del self._windows[key]

        self._last_cleanup = now

    def check_rate_limit(self, client_id: str, tier: str) -> tuple[bool, str | None]:
        """
        Check if a request is allowed under rate limits.

        Returns:
            (allowed, error_message) - allowed is True if request should proceed
        """
        now = self._clock()
        self._cleanup_old_entries(now)

        config = RATE_LIMIT_TIERS.get(tier, RATE_LIMIT_TIERS["standard"])
        window = self._windows[(client_id, tier)]

        if window.blocked_until > now:
            remaining = int(window.blocked_until - now)
            return False, f"Rate limit exceeded. Retry after {remaining} seconds."

        minute_ago = now - 60
        five_seconds_ago = now - 5
        window.timestamps = [ts for ts in window.timestamps if ts > minute_ago]

        if len(window.timestamps) >= config.requests_per_minute:
            window.blocked_until = now + config.block_duration_seconds
            return False, f"Rate limit exceeded ({config.requests_per_minute}/min). Retry after {config.block_duration_seconds} seconds."

        recent_count = sum(1 for ts in window.timestamps if ts > five_seconds_ago)
        if recent_count >= config.burst_limit:
            return False, f"Burst limit exceeded ({config.burst_limit}/5s). Slow down."

        window.timestamps.append(now)
        return True, None

    def reset(self) -> None:
        self._windows.clear()


# Global rate limiter instance
_rate_limiter = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    return _rate_limiter


def _trust_proxy_headers() -> bool:
    return os.getenv("TRUST_PROXY_HEADERS", "false").strip().lower() in ("1", "true", "yes")


def _get_client_identifier(request: Request) -> str:
    """Get a unique identifier for the client (for rate limiting).

    X-Forwarded-For is only honoured behind a trusted proxy (TRUST_PROXY_HEADERS).
    """
    forwarded = request.headers.get("X-Forwarded-For") if _trust_proxy_headers() else None
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


# =============================================================================
# FastAPI Middleware
# =============================================================================

class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware that enforces per-client rate limits by endpoint tier."""

    async def dispatch(self, request: Request, call_next: Callable) -> Any:
        path = request.url.path

        if any(path.startswith(prefix) for prefix in SKIP_PREFIXES):
            return await call_next(request)

        client_id = _get_client_identifier(request)
        tier = _get_endpoint_tier(path)
        allowed, rate_error = _rate_limiter.check_rate_limit(client_id, tier)
        if not allowed:
            logger.warning("Rate limited %s on %s %s (tier=%s)", client_id, request.method, path, tier)
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": rate_error},
                headers={"Retry-After": "60"},
            )

        return await call_next(request)


# =============================================================================
# Middleware Setup
# =============================================================================

def setup_middlewares(app) -> None:
    """
    Configure all middlewares for the FastAPI application.

    Adds:
    - CORS middleware for the frontend origins (credentials allowed for the session cookie)
    - Rate limiting middleware
    """
    from fastapi.middleware.cors import CORSMiddleware

    cors_origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RateLimitMiddleware)

    logger.info("Middlewares configured: CORS (origins=%s), RateLimitMiddleware", cors_origins)


def setup_request_logging(app) -> None:
    """
    Add request logging middleware for debugging.

    Logs method, path, status and response time. Query strings are left out
    since OAuth callbacks carry codes in them.
    """

    class RequestLoggingMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            start_time = time.time()
            response = await call_next(request)
            process_time = time.time() - start_time

            if request.url.path not in ("/", "/healthz"):
                logger.debug(
                    "%s %s - %d (%.3fs)",
                    request.method,
                    request.url.path,
                    response.status_code,
                    process_time,
                )

            return response

    app.add_middleware(RequestLoggingMiddleware)
    logger.info("Request logging middleware configured")
