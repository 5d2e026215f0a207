"""Process-wide service instances and their FastAPI dependency providers.

Classes in ``services`` and ``adapters`` take their collaborators as
constructor arguments; this module is the one place that builds the
application's instances from settings. ``reset_dependencies()`` drops them
so tests can start from a clean slate.
"""

from __future__ import annotations

from resilient_state.adapters.rate_limit.base import AbstractRateLimiter
from resilient_state.adapters.rate_limit.fixed_window import FixedWindowRateLimiter
from resilient_state.core.config import settings
from resilient_state.services.circuit_breaker import CircuitBreaker
from resilient_state.services.health_service import ServiceHealthMonitor
from resilient_state.services.state_service import StateService

_state_service: StateService | None = None
_rate_limiter: AbstractRateLimiter | None = None
_circuit_breaker: CircuitBreaker | None = None
_health_monitor: ServiceHealthMonitor | None = None


def get_state_service() -> StateService:
    global _state_service
    if _state_service is None:
        _state_service = StateService(settings=settings.state_store)
    return _state_service


def get_rate_limiter() -> AbstractRateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = FixedWindowRateLimiter(get_state_service())
    return _rate_limiter


def get_circuit_breaker() -> CircuitBreaker:
    global _circuit_breaker
    if _circuit_breaker is None:
        _circuit_breaker = CircuitBreaker(
            get_state_service(),
            state_ttl_seconds=settings.resilience.circuit_state_ttl_seconds,
        )
    return _circuit_breaker


def get_health_monitor() -> ServiceHealthMonitor:
    global _health_monitor
    if _health_monitor is None:
        _health_monitor = ServiceHealthMonitor(
            get_circuit_breaker(),
            get_state_service(),
            config=settings.resilience,
        )
    return _health_monitor


def reset_dependencies() -> None:
    """Forget all cached instances (does not stop a started state service)."""
    global _state_service, _rate_limiter, _circuit_breaker, _health_monitor
    _state_service = None
    _rate_limiter = None
    _circuit_breaker = None
    _health_monitor = None
