"""Health tracking and graceful degradation for protected dependencies.

Wraps the circuit breaker with:
- a per-process status map (last check, last error, consecutive failures)
- ``with_retry`` for calls to a dependency, with exponential backoff
- aggregate views for health and admin endpoints

Fallback to memory is handled below this layer by the state service, so the
monitor always talks to the breaker and reports which mode served it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, TypeVar

from resilient_state.core.config import ResilienceSettings
from resilient_state.core.errors import ServiceUnavailableAppError
from resilient_state.schemas.state import (
    CircuitBreakerSummary,
    ComprehensiveHealth,
    ServiceStatus,
    StoreStats,
)
from resilient_state.services.circuit_breaker import CircuitBreaker
from resilient_state.services.state_service import StateService

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay_ms(attempt: int, base_ms: int, cap_ms: int) -> int:
    """Delay before retrying after the given (1-based) failed attempt.

    Examples:
        >>> [backoff_delay_ms(n, 1000, 10000) for n in range(1, 6)]
        [1000, 2000, 4000, 8000, 10000]
    """

    return min(base_ms * 2 ** (attempt - 1), cap_ms)


class ServiceHealthMonitor:
    """Tracks dependency health on top of a shared circuit breaker."""

    def __init__(
        self,
        breaker: CircuitBreaker,
        store: StateService,
        *,
        config: ResilienceSettings | None = None,
        services: Iterable[str] | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the monitor.

        Args:
            breaker: Circuit breaker used for every service.
            store: State service, queried for the current backend mode.
            config: Thresholds, timeouts and retry settings.
            services: Service names reported by the aggregate views;
                defaults to the configured monitored services.
            sleep: Awaitable sleep, injected so tests do not wait.
        """
        self._breaker = breaker
        self._store = store
        self._config = config or ResilienceSettings()  # type: ignore[call-arg]
        self._services = list(services) if services is not None else self._config.monitored_service_names
        self._sleep = sleep
        self._status: dict[str, ServiceStatus] = {}

    @property
    def services(self) -> list[str]:
        return list(self._services)

    def _update_status(self, service_name: str, healthy: bool, error: str | None = None) -> None:
        previous = self._status.get(service_name)
        self._status[service_name] = ServiceStatus(
            name=service_name,
            healthy=healthy,
            last_check=datetime.now(timezone.utc),
            last_error=error,
            consecutive_failures=0 if healthy else (previous.consecutive_failures if previous else 0) + 1,
        )

    async def is_service_available(self, service_name: str) -> bool:
        """False while the service's circuit is open; half-open lets a trial request through."""
        if await self._breaker.is_open(service_name):
            logger.warning("service.circuit_open", extra={"service": service_name})
            return False
        return True

    async def record_service_failure(self, service_name: str, error: BaseException | str | None = None) -> None:
        result = await self._breaker.record_failure(
            service_name,
            self._config.circuit_failure_threshold,
            self._config.circuit_reset_timeout_ms,
        )
        message = str(error) if error is not None else "Unknown error"
        self._update_status(service_name, False, message)

        if result.is_open:
            logger.error(
                "service.unavailable",
                extra={
                    "service": service_name,
                    "failure_count": result.failure_count,
                    "mode": self._store.get_status().mode,
                },
            )

    async def record_service_success(self, service_name: str) -> None:
        await self._breaker.record_success(service_name)
        self._update_status(service_name, True)

    def service_unavailable_error(self, service_name: str) -> ServiceUnavailableAppError:
        """Build the standard error returned when a dependency is unavailable."""
        retry_after = self._config.retry_after_seconds
        return ServiceUnavailableAppError(
            code="service_unavailable",
            message=f"{service_name} is temporarily unavailable. Please try again in a few moments.",
            details={"service": service_name, "retry_after": retry_after},
        )

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        service_name: str,
        max_retries: int | None = None,
    ) -> T:
        """Call ``operation`` with exponential backoff, feeding the breaker.

        A success is recorded on the first successful attempt. A failure is
        recorded once, after the last attempt, and the last error re-raised.

        Raises:
            ServiceUnavailableAppError: If the circuit is open before the first attempt.
            Exception: Whatever the final attempt raised.
        """
        attempts = max_retries if max_retries is not None else self._config.retry_max_attempts
        if attempts < 1:
            raise ValueError("max_retries must be >= 1")

        if not await self.is_service_available(service_name):
            raise self.service_unavailable_error(service_name)

        attempt = 1
        while True:
            try:
                result = await operation()
            except Exception as exc:
                if attempt >= attempts:
                    await self.record_service_failure(service_name, exc)
                    raise
                delay_ms = backoff_delay_ms(
                    attempt,
                    self._config.retry_base_delay_ms,
                    self._config.retry_max_delay_ms,
                )
                logger.warning(
                    "service.retry",
                    extra={
                        "service": service_name,
                        "attempt": attempt,
                        "delay_ms": delay_ms,
                        "error_msg": str(exc),
                    },
                )
                await self._sleep(delay_ms / 1000)
                attempt += 1
                continue

            await self.record_service_success(service_name)
            return result

    def get_service_health(self) -> dict[str, ServiceStatus]:
        return {name: status.model_copy() for name, status in self._status.items()}

    async def get_circuit_breaker_summary(self, service_name: str) -> CircuitBreakerSummary:
        mode = self._store.get_status().mode
        try:
            state = await self._breaker.get_state(service_name)
            current = await self._breaker.current_state(service_name)
        except Exception as exc:
            logger.error(
                "circuit_breaker.read_failed",
                extra={"service": service_name, "error_type": type(exc).__name__},
            )
            return CircuitBreakerSummary(is_open=False, failure_count=0, mode=mode)

        return CircuitBreakerSummary(
            is_open=state.is_open if state else False,
            failure_count=state.failure_count if state else 0,
            state=current,
            mode=mode,
        )

    async def get_circuit_breaker_states(self) -> dict[str, CircuitBreakerSummary]:
        return {name: await self.get_circuit_breaker_summary(name) for name in self._services}

    async def reset_circuit_breaker(self, service_name: str) -> None:
        await self._breaker.reset(service_name)
        self._update_status(service_name, True)
        logger.info("service.circuit_reset", extra={"service": service_name})

    async def get_comprehensive_health(self) -> ComprehensiveHealth:
        return ComprehensiveHealth(
            services=self.get_service_health(),
            circuit_breakers=await self.get_circuit_breaker_states(),
            state_store=self._store.get_status(),
            state_store_stats=StoreStats(**self._store.stats()),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
