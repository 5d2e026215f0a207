"""Tests for the fixed-window rate limiter."""

import pytest

from resilient_state.adapters.rate_limit.fixed_window import (
    FixedWindowRateLimiter,
    window_index,
    window_key,
)
from resilient_state.services.state_service import StateService


@pytest.fixture
def limiter(memory_store: StateService, clock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(memory_store, clock=clock)


def test_window_helpers() -> None:
    assert window_index(1_700_000_005.9, 10) == 170_000_000
    assert window_key("rate:ip:1.2.3.4", 170_000_000) == "rate:ip:1.2.3.4:170000000"


@pytest.mark.asyncio
async def test_single_request_window(limiter: FixedWindowRateLimiter, clock) -> None:
    first = await limiter.check("a", 1, 10)
    second = await limiter.check("a", 1, 10)

    assert first.allowed is True
    assert first.remaining == 0
    assert first.reset_at == 1_700_000_010_000
    assert second.allowed is False
    assert second.remaining == 0
    assert second.retry_after_seconds == 10

    clock.advance(10)
    third = await limiter.check("a", 1, 10)
    assert third.allowed is True
    assert third.reset_at == 1_700_000_020_000


@pytest.mark.asyncio
async def test_remaining_counts_down_then_blocks(limiter: FixedWindowRateLimiter) -> None:
    results = [await limiter.check("user:42", 3, 60) for _ in range(5)]

    assert [r.allowed for r in results] == [True, True, True, False, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0, 0]
    assert all(r.limit == 3 for r in results)


@pytest.mark.asyncio
async def test_retry_after_shrinks_towards_window_end(
    limiter: FixedWindowRateLimiter, clock
) -> None:
    await limiter.check("k", 1, 60)
    clock.advance(20.5)

    blocked = await limiter.check("k", 1, 60)

    assert blocked.allowed is False
    assert blocked.retry_after_seconds == 20


@pytest.mark.asyncio
async def test_window_counter_gets_ttl_only_on_creation(
    limiter: FixedWindowRateLimiter, memory_store: StateService, clock
) -> None:
    await limiter.check("k", 10, 60)
    bucket = window_key("k", window_index(clock(), 60))
    assert await memory_store.ttl(bucket) == 60

    clock.advance(20)
    await limiter.check("k", 10, 60)

    assert await memory_store.ttl(bucket) == 40
    assert await memory_store.get(bucket) == 2


@pytest.mark.asyncio
async def test_keys_are_counted_independently(limiter: FixedWindowRateLimiter) -> None:
    await limiter.check("a", 1, 10)

    other = await limiter.check("b", 1, 10)

    assert other.allowed is True


@pytest.mark.asyncio
async def test_burst_across_window_boundary_is_allowed(
    limiter: FixedWindowRateLimiter, clock
) -> None:
    clock.advance(9)
    end_of_window = [await limiter.check("burst", 2, 10) for _ in range(2)]
    clock.advance(1)
    start_of_next = [await limiter.check("burst", 2, 10) for _ in range(2)]

    assert all(r.allowed for r in end_of_window + start_of_next)


class _BrokenStore:
    async def incr(self, key: str) -> int:
        raise RuntimeError("counter unavailable")

    async def expire(self, key: str, seconds: int) -> None:
        raise AssertionError("expire must not be reached")


@pytest.mark.asyncio
async def test_counting_failure_fails_open(clock) -> None:
    limiter = FixedWindowRateLimiter(_BrokenStore(), clock=clock)  # type: ignore[arg-type]

    result = await limiter.check("k", 5, 10)

    assert result.allowed is True
    assert result.remaining == 5
    assert result.reset_at == 1_700_000_010_000
    assert result.retry_after_seconds is None


@pytest.mark.asyncio
async def test_reset_clears_current_and_previous_windows(
    limiter: FixedWindowRateLimiter, memory_store: StateService, clock
) -> None:
    await limiter.check("k", 1, 60)
    previous = window_key("k", window_index(clock(), 60))
    clock.advance(60)
    await limiter.check("k", 1, 60)
    assert (await limiter.check("k", 1, 60)).allowed is False

    await limiter.reset("k", 60)

    assert (await limiter.check("k", 1, 60)).allowed is True
    assert await memory_store.exists(previous) is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "key,limit,window",
    [("", 1, 10), ("k", 0, 10), ("k", 1, 0)],
)
async def test_invalid_arguments_raise(
    limiter: FixedWindowRateLimiter, key: str, limit: int, window: int
) -> None:
    with pytest.raises(ValueError):
        await limiter.check(key, limit, window)


@pytest.mark.asyncio
async def test_reset_rejects_empty_key(limiter: FixedWindowRateLimiter) -> None:
    with pytest.raises(ValueError):
        await limiter.reset("")


@pytest.mark.asyncio
async def test_reset_at_is_identical_within_a_window(limiter: FixedWindowRateLimiter, clock) -> None:
    first = await limiter.check("x", 3, 60)
    clock.advance(30)
    second = await limiter.check("x", 3, 60)

    assert first.reset_at == second.reset_at


@pytest.mark.asyncio
async def test_unconfigured_store_still_limits(memory_store: StateService, limiter: FixedWindowRateLimiter) -> None:
    assert memory_store.get_status().model_dump() == {"available": False, "mode": "memory"}

    assert (await limiter.check("a", 1, 10)).allowed is True
    assert (await limiter.check("a", 1, 10)).allowed is False
