"""Tests for dependency health tracking, retries and degradation."""

import pytest

from resilient_state.core.config import ResilienceSettings
from resilient_state.core.errors import ServiceUnavailableAppError
from resilient_state.schemas.state import CircuitState
from resilient_state.services.circuit_breaker import CircuitBreaker
from resilient_state.services.health_service import ServiceHealthMonitor, backoff_delay_ms
from resilient_state.services.state_service import StateService


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FlakyOperation:
    """Fails ``failures`` times, then returns ``value``."""

    def __init__(self, failures: int, value: str = "ok") -> None:
        self.failures = failures
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")
        return self.value


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def breaker(memory_store: StateService, clock) -> CircuitBreaker:
    return CircuitBreaker(memory_store, clock=clock)


@pytest.fixture
def monitor(breaker: CircuitBreaker, memory_store: StateService, sleep: RecordingSleep) -> ServiceHealthMonitor:
    config = ResilienceSettings(
        circuit_failure_threshold=2,
        circuit_reset_timeout_ms=30_000,
        retry_max_attempts=3,
        retry_base_delay_ms=1000,
        retry_max_delay_ms=10_000,
        retry_after_seconds=30,
        monitored_services="payments,sms",
    )
    return ServiceHealthMonitor(breaker, memory_store, config=config, sleep=sleep)


def test_backoff_doubles_up_to_cap() -> None:
    assert [backoff_delay_ms(n, 1000, 10_000) for n in range(1, 6)] == [1000, 2000, 4000, 8000, 10_000]


def test_services_default_to_configured_list(monitor: ServiceHealthMonitor) -> None:
    assert monitor.services == ["payments", "sms"]


@pytest.mark.asyncio
async def test_with_retry_returns_first_success(monitor: ServiceHealthMonitor, sleep: RecordingSleep) -> None:
    operation = FlakyOperation(failures=0)

    assert await monitor.with_retry(operation, "payments") == "ok"
    assert operation.calls == 1
    assert sleep.delays == []
    assert monitor.get_service_health()["payments"].healthy is True


@pytest.mark.asyncio
async def test_with_retry_backs_off_between_attempts(
    monitor: ServiceHealthMonitor, sleep: RecordingSleep, breaker: CircuitBreaker
) -> None:
    operation = FlakyOperation(failures=2)

    assert await monitor.with_retry(operation, "payments") == "ok"
    assert operation.calls == 3
    assert sleep.delays == [1.0, 2.0]
    assert await breaker.get_state("payments") is not None
    assert (await breaker.get_state("payments")).failure_count == 0


@pytest.mark.asyncio
async def test_with_retry_records_one_failure_and_reraises(
    monitor: ServiceHealthMonitor, sleep: RecordingSleep, breaker: CircuitBreaker
) -> None:
    operation = FlakyOperation(failures=10)

    with pytest.raises(ConnectionError, match="attempt 3 failed"):
        await monitor.with_retry(operation, "sms")

    assert operation.calls == 3
    assert sleep.delays == [1.0, 2.0]
    state = await breaker.get_state("sms")
    assert state is not None
    assert state.failure_count == 1

    status = monitor.get_service_health()["sms"]
    assert status.healthy is False
    assert status.last_error == "attempt 3 failed"
    assert status.consecutive_failures == 1


@pytest.mark.asyncio
async def test_open_circuit_short_circuits_with_unavailable_error(
    monitor: ServiceHealthMonitor,
) -> None:
    await monitor.record_service_failure("payments", "timeout")
    await monitor.record_service_failure("payments", "timeout")
    operation = FlakyOperation(failures=0)

    with pytest.raises(ServiceUnavailableAppError) as exc_info:
        await monitor.with_retry(operation, "payments")

    assert operation.calls == 0
    error = exc_info.value
    assert error.code == "service_unavailable"
    assert error.details["service"] == "payments"
    assert error.details["retry_after"] == 30


@pytest.mark.asyncio
async def test_half_open_success_closes_circuit(
    monitor: ServiceHealthMonitor, breaker: CircuitBreaker, clock
) -> None:
    await monitor.record_service_failure("payments")
    await monitor.record_service_failure("payments")
    assert await monitor.is_service_available("payments") is False

    clock.advance(30)
    assert await monitor.is_service_available("payments") is True
    await monitor.with_retry(FlakyOperation(failures=0), "payments")

    assert await breaker.current_state("payments") is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_with_retry_rejects_non_positive_attempts(monitor: ServiceHealthMonitor) -> None:
    with pytest.raises(ValueError):
        await monitor.with_retry(FlakyOperation(failures=0), "payments", max_retries=0)


@pytest.mark.asyncio
async def test_consecutive_failures_accumulate_until_success(monitor: ServiceHealthMonitor) -> None:
    await monitor.record_service_failure("sms", RuntimeError("boom"))
    await monitor.record_service_failure("sms")

    status = monitor.get_service_health()["sms"]
    assert status.consecutive_failures == 2
    assert status.last_error == "Unknown error"

    await monitor.record_service_success("sms")
    assert monitor.get_service_health()["sms"].consecutive_failures == 0


@pytest.mark.asyncio
async def test_circuit_breaker_states_cover_monitored_services(
    monitor: ServiceHealthMonitor,
) -> None:
    await monitor.record_service_failure("payments")
    await monitor.record_service_failure("payments")

    states = await monitor.get_circuit_breaker_states()

    assert set(states) == {"payments", "sms"}
    assert states["payments"].is_open is True
    assert states["payments"].state is CircuitState.OPEN
    assert states["payments"].failure_count == 2
    assert states["payments"].mode == "memory"
    assert states["sms"].is_open is False
    assert states["sms"].state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_reset_circuit_breaker_marks_service_healthy(
    monitor: ServiceHealthMonitor,
) -> None:
    await monitor.record_service_failure("payments")
    await monitor.record_service_failure("payments")

    await monitor.reset_circuit_breaker("payments")

    assert await monitor.is_service_available("payments") is True
    assert monitor.get_service_health()["payments"].healthy is True


@pytest.mark.asyncio
async def test_comprehensive_health(monitor: ServiceHealthMonitor) -> None:
    await monitor.record_service_failure("sms", "smtp down")

    health = await monitor.get_comprehensive_health()

    assert health.state_store.mode == "memory"
    assert health.services["sms"].last_error == "smtp down"
    assert set(health.circuit_breakers) == {"payments", "sms"}
    assert health.timestamp


@pytest.mark.asyncio
async def test_comprehensive_health_reports_store_counters(
    connected_store: StateService, shared_client, clock
) -> None:
    monitor = ServiceHealthMonitor(
        CircuitBreaker(connected_store, clock=clock),
        connected_store,
        config=ResilienceSettings(monitored_services="payments"),
    )
    shared_client.failing = True
    await connected_store.set("k", 1)

    health = await monitor.get_comprehensive_health()

    assert health.state_store.mode == "memory"
    assert health.state_store_stats.fallbacks == 1
    assert health.state_store_stats.last_failed_operation == "set"
    assert health.state_store_stats.local_store["entries"] == 1


@pytest.mark.asyncio
async def test_single_attempt_failure_is_recorded_and_reraised(
    monitor: ServiceHealthMonitor, sleep: RecordingSleep
) -> None:
    operation = FlakyOperation(failures=1)

    with pytest.raises(ConnectionError, match="attempt 1 failed"):
        await monitor.with_retry(operation, "sms", max_retries=1)

    assert operation.calls == 1
    assert sleep.delays == []
    assert monitor.get_service_health()["sms"].consecutive_failures == 1
