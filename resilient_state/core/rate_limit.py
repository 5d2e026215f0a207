"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function only.
- Shared counters: the limiter stores windows through the state service,
  so limits hold across workers while the shared store is reachable.
- Fail open: a broken limiter never turns into rejected traffic.

Rate limiting strategy:
- Global fixed-window limit per API key.
- If API key is missing (e.g., auth disabled), fall back to client IP.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from resilient_state.adapters.rate_limit.base import AbstractRateLimiter
from resilient_state.core.config import settings
from resilient_state.core.dependencies import get_rate_limiter

logger = logging.getLogger(__name__)

KEY_NAMESPACE = "rate:http"


def build_rate_limit_key(request: Request, x_api_key: str | None) -> str:
    """Build the limiter key for the current request.

    The API key itself is hashed so it never lands in the store verbatim.

    Args:
        request: FastAPI request.
        x_api_key: API key value from the X-API-Key header.

    Returns:
        str: Namespaced limiter key.
    """

    if x_api_key:
        return f"{KEY_NAMESPACE}:api_key:{hash_limiter_key(x_api_key)}"

    client_host = request.client.host if request.client else "unknown"
    return f"{KEY_NAMESPACE}:ip:{client_host}"


def hash_limiter_key(key: str) -> str:
    """Hash a rate limit key for logging without exposing secrets."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


async def enforce_rate_limit(
    request: Request,
    limiter: Annotated[AbstractRateLimiter, Depends(get_rate_limiter)],
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency enforcing rate limits.

    When enabled, counts one request against the requester's window. If the
    requester exceeds the configured rate, raises HTTP 429.

    Raises:
        HTTPException: 429 Too Many Requests when rate limit is exceeded.
    """

    if not settings.app.rate_limit_enabled:
        return

    key = build_rate_limit_key(request, x_api_key)
    key_hash = hash_limiter_key(key)
    key_type = "api_key" if x_api_key else "ip"
    window_seconds = settings.app.rate_limit_window_seconds

    result = await limiter.check(key, settings.app.rate_limit_requests, window_seconds)
    if result.allowed:
        logger.debug(
            "rate_limit.allowed",
            extra={
                "key_type": key_type,
                "key_hash": key_hash,
                "limit": result.limit,
                "remaining": result.remaining,
                "window_s": window_seconds,
            },
        )
        return

    retry_after = result.retry_after_seconds or 0
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "key_type": key_type,
            "key_hash": key_hash,
            "limit": result.limit,
            "remaining": result.remaining,
            "window_s": window_seconds,
            "retry_after_s": retry_after,
        },
    )

    headers: dict[str, str] = {}
    if settings.app.rate_limit_include_headers:
        headers["Retry-After"] = str(retry_after)
        headers["X-RateLimit-Limit"] = str(result.limit)
        headers["X-RateLimit-Remaining"] = str(result.remaining)
        headers["X-RateLimit-Reset"] = str(result.reset_at // 1000)

    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Rate limit exceeded. Try again later.",
        headers=headers or None,
    )
