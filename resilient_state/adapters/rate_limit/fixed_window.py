"""Fixed-window rate limiter built on the state service counters.

Notes:
- Counts live in the state service, so they are global across workers while
  the shared store is reachable and per-process in memory mode.
- Fixed windows are imprecise at boundaries: a client can send ``limit``
  requests at the end of one window and ``limit`` more at the start of the
  next, i.e. up to 2x ``limit`` in a short span. This is accepted; switching
  to a sliding window would be a separate change.
- Fails open: if counting itself fails, the request is allowed.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable

from resilient_state.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from resilient_state.services.state_service import StateService

logger = logging.getLogger(__name__)


def window_index(now: float, window_seconds: int) -> int:
    """Index of the fixed window containing ``now`` (UNIX seconds)."""

    return math.floor(now / window_seconds)


def window_key(key: str, index: int) -> str:
    return f"{key}:{index}"


class FixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter counting requests per key in discrete time buckets.

    Each bucket is a counter at ``{key}:{floor(now / window_seconds)}`` that
    expires after ``window_seconds``.
    """

    def __init__(
        self,
        store: StateService,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: State service holding the window counters.
            clock: Time source function returning UNIX time in seconds.
        """
        self._store = store
        self._clock = clock

    async def check(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Count one request and decide whether it fits in the current window.

        The counter is incremented first and its TTL is set only when this
        call created the window. Setting it on every call would keep pushing
        the expiry back and the window would never close.

        Raises:
            ValueError: If key is empty, or limit/window_seconds are below 1.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        now = self._clock()
        index = window_index(now, window_seconds)
        bucket = window_key(key, index)
        reset_at = (index + 1) * window_seconds * 1000

        try:
            count = await self._store.incr(bucket)
            if count == 1:
                await self._store.expire(bucket, window_seconds)
        except Exception as exc:
            logger.error(
                "rate_limit.check_failed",
                extra={
                    "window_key": bucket,
                    "limit": limit,
                    "window_s": window_seconds,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return RateLimitResult(allowed=True, limit=limit, remaining=limit, reset_at=reset_at)

        allowed = count <= limit
        remaining = max(0, limit - count)
        if allowed:
            return RateLimitResult(allowed=True, limit=limit, remaining=remaining, reset_at=reset_at)

        retry_after = max(0, math.ceil(reset_at / 1000 - now))
        return RateLimitResult(
            allowed=False,
            limit=limit,
            remaining=remaining,
            reset_at=reset_at,
            retry_after_seconds=retry_after,
        )

    async def reset(self, key: str, window_seconds: int = 60) -> None:
        """Delete the current and the previous window counters for ``key``."""
        if not key:
            raise ValueError("key must be a non-empty string")

        index = window_index(self._clock(), window_seconds)
        await self._store.delete(window_key(key, index))
        await self._store.delete(window_key(key, index - 1))
        logger.info("rate_limit.reset", extra={"window_s": window_seconds})
