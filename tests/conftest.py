"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the TESTING environment variable so no .env file is loaded, and
removes shared store credentials so every test starts in memory mode unless
it wires a client explicitly.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.pop("UPSTASH_REDIS_REST_URL", None)
os.environ.pop("UPSTASH_REDIS_REST_TOKEN", None)

os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")

from typing import Any  # noqa: E402

import pytest  # noqa: E402

from resilient_state.adapters.state_store.base import (  # noqa: E402
    AbstractSharedStoreClient,
    PipelineCommand,
)
from resilient_state.adapters.state_store.in_memory import LocalFallbackStore  # noqa: E402
from resilient_state.core.config import StateStoreSettings  # noqa: E402
from resilient_state.core.dependencies import reset_dependencies  # noqa: E402
from resilient_state.services.state_service import StateService  # noqa: E402


class FakeClock:
    """Deterministic clock (UNIX seconds) used instead of sleeping."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakeSharedStoreClient(AbstractSharedStoreClient):
    """Shared store stand-in backed by its own expiring map.

    Set ``failing = True`` to make every call raise, simulating an outage.
    ``calls`` records the operations that reached the "network".
    """

    def __init__(self, clock: FakeClock) -> None:
        self.available = True
        self.failing = False
        self.closed = False
        self.calls: list[str] = []
        self.backing = LocalFallbackStore(clock=clock)

    def _hit(self, operation: str) -> None:
        self.calls.append(operation)
        if self.failing:
            raise ConnectionError("shared store unreachable")

    async def get(self, key: str) -> Any | None:
        self._hit("get")
        return self.backing.get(key)

    async def set(self, key: str, value: Any, *, ex: int | None = None) -> None:
        self._hit("set")
        self.backing.set(key, value, ex)

    async def delete(self, key: str) -> int:
        self._hit("del")
        return self.backing.delete(key)

    async def incr(self, key: str) -> int:
        self._hit("incr")
        return self.backing.incr(key)

    async def expire(self, key: str, seconds: int) -> bool:
        self._hit("expire")
        return self.backing.expire(key, seconds)

    async def ttl(self, key: str) -> int:
        self._hit("ttl")
        return self.backing.ttl(key)

    async def exists(self, key: str) -> bool:
        self._hit("exists")
        return self.backing.exists(key)

    async def pipeline(self, commands: list[PipelineCommand]) -> list[Any]:
        self._hit("pipeline")
        return self.backing.pipeline(commands)

    async def aclose(self) -> None:
        self.closed = True


CONFIGURED = StateStoreSettings(
    rest_url="https://shared-store.test",
    rest_token="test-token",
    recheck_interval_seconds=30,
)
UNCONFIGURED = StateStoreSettings(rest_url=None, rest_token=None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def shared_client(clock: FakeClock) -> FakeSharedStoreClient:
    return FakeSharedStoreClient(clock)


@pytest.fixture
def connected_store(clock: FakeClock, shared_client: FakeSharedStoreClient) -> StateService:
    """State service whose shared store is the fake client."""
    return StateService(
        settings_provider=lambda: CONFIGURED,
        client_factory=lambda cfg: shared_client,
        clock=clock,
    )


@pytest.fixture
def memory_store(clock: FakeClock) -> StateService:
    """State service without shared store configuration."""
    return StateService(settings_provider=lambda: UNCONFIGURED, clock=clock)


@pytest.fixture(autouse=True)
def _fresh_dependencies():
    """Drop process-wide service instances between tests."""
    reset_dependencies()
    yield
    reset_dependencies()
