"""Rate limiter interfaces.

The HTTP layer and integrations depend on this abstraction (not the
concrete implementation), so the counting algorithm can change without
touching callers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch milliseconds at which the current window ends.
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None = None


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    async def check(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Count one request for ``key`` and decide whether it is allowed.

        Args:
            key: Unique identifier (e.g., ``rate:auth:192.168.1.1``).
            limit: Maximum requests allowed per window.
            window_seconds: Window length in seconds.

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    async def reset(self, key: str, window_seconds: int = 60) -> None:
        """Forget recent usage for ``key`` (administrative/testing use)."""
        raise NotImplementedError
