"""Circuit breaker for external dependencies, persisted through the state service.

One record per protected service name lives at ``circuit:{service}``:

- Closed: ``is_open`` is false.
- Open: ``is_open`` is true and ``now < half_open_until``.
- Half-open: ``is_open`` is true and ``now >= half_open_until``. Never
  stored; ``is_open()`` derives it and lets the trial request through
  without writing anything. The trial request's outcome is then recorded with
  ``record_success`` (closes) or ``record_failure`` (re-opens, keeping the
  accumulated failure count).

A missing record means closed with zero failures. Records expire after a
fixed TTL so an abandoned breaker does not linger.

Storage problems never reach callers: checks fail open (report "not open").
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from pydantic import ValidationError

from resilient_state.schemas.state import CircuitBreakerResult, CircuitBreakerState, CircuitState
from resilient_state.services.state_service import StateService

logger = logging.getLogger(__name__)

KEY_PREFIX = "circuit:"
DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RESET_TIMEOUT_MS = 30_000
DEFAULT_STATE_TTL_SECONDS = 3600


def circuit_key(service_name: str) -> str:
    return f"{KEY_PREFIX}{service_name}"


def _iso(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


class CircuitBreaker:
    """Three-state breaker keyed by service name.

    Instances hold no per-service state of their own; everything is read
    from and written to the state service, so all workers sharing a store
    see the same circuits.
    """

    def __init__(
        self,
        store: StateService,
        *,
        state_ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the breaker.

        Args:
            store: State service holding circuit records.
            state_ttl_seconds: Lifetime of a record after its last write.
            clock: Time source function returning UNIX time in seconds.
        """
        if state_ttl_seconds < 1:
            raise ValueError("state_ttl_seconds must be >= 1")
        self._store = store
        self._state_ttl_seconds = state_ttl_seconds
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def get_state(self, service_name: str) -> CircuitBreakerState | None:
        """Load the stored record, or None when the circuit has never failed (or expired).

        A record that cannot be parsed is treated as absent.
        """
        raw = await self._store.get(circuit_key(service_name))
        if raw is None:
            return None
        try:
            return CircuitBreakerState.model_validate(raw)
        except ValidationError:
            logger.warning(
                "circuit_breaker.invalid_state",
                extra={"service": service_name, "raw_type": type(raw).__name__},
            )
            return None

    async def set_state(self, service_name: str, state: CircuitBreakerState) -> None:
        await self._store.set(
            circuit_key(service_name),
            state.model_dump(mode="json"),
            ex=self._state_ttl_seconds,
        )

    async def record_failure(
        self,
        service_name: str,
        threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout_ms: int = DEFAULT_RESET_TIMEOUT_MS,
    ) -> CircuitBreakerResult:
        """Count a failure and open the circuit once ``threshold`` is reached.

        Failures keep accumulating while the circuit is open, so a failed
        failed half-open trial re-opens it immediately with a fresh timeout.

        Args:
            service_name: Protected dependency, e.g. ``payments``.
            threshold: Failures needed to open the circuit.
            reset_timeout_ms: How long the circuit stays open before a trial request.

        Returns:
            Whether the circuit is now open and the accumulated failure count.

        Raises:
            ValueError: If threshold or reset_timeout_ms are below 1.
        """
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        if reset_timeout_ms < 1:
            raise ValueError("reset_timeout_ms must be >= 1")

        try:
            state = await self.get_state(service_name) or CircuitBreakerState()
            now_ms = self._now_ms()
            state.failure_count += 1
            state.last_failure_time = now_ms

            if state.failure_count >= threshold:
                state.is_open = True
                state.half_open_until = now_ms + reset_timeout_ms
                logger.error(
                    "circuit_breaker.opened",
                    extra={
                        "service": service_name,
                        "failure_count": state.failure_count,
                        "threshold": threshold,
                        "half_open_at": _iso(state.half_open_until),
                    },
                )

            await self.set_state(service_name, state)
        except Exception as exc:
            logger.error(
                "circuit_breaker.record_failed",
                extra={
                    "service": service_name,
                    "outcome": "failure",
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return CircuitBreakerResult(is_open=False, failure_count=0)

        return CircuitBreakerResult(is_open=state.is_open, failure_count=state.failure_count)

    async def record_success(self, service_name: str) -> None:
        """Close the circuit and clear its failure history."""
        try:
            await self.set_state(service_name, CircuitBreakerState())
        except Exception as exc:
            logger.error(
                "circuit_breaker.record_failed",
                extra={
                    "service": service_name,
                    "outcome": "success",
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )

    async def is_open(self, service_name: str) -> bool:
        """Return True only while the circuit is open and not yet due for a trial request.

        Never raises: if the record cannot be read the circuit is reported
        as not open.
        """
        try:
            state = await self.get_state(service_name)
        except Exception as exc:
            logger.error(
                "circuit_breaker.check_failed",
                extra={
                    "service": service_name,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return False

        if state is None:
            return False

        current = state.state_at(self._now_ms())
        if current is CircuitState.HALF_OPEN:
            logger.info(
                "circuit_breaker.half_open",
                extra={"service": service_name, "failure_count": state.failure_count},
            )
            return False
        return current is CircuitState.OPEN

    async def current_state(self, service_name: str) -> CircuitState:
        """Derived state for reporting; does not log or mutate anything."""
        state = await self.get_state(service_name)
        if state is None:
            return CircuitState.CLOSED
        return state.state_at(self._now_ms())

    async def reset(self, service_name: str) -> None:
        """Administrative reset, identical in effect to a recorded success."""
        await self.record_success(service_name)
        logger.info("circuit_breaker.reset", extra={"service": service_name})
