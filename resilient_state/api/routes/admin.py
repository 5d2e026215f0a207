"""Administrative endpoints for resilience state.

Operators use these to inspect circuits during an incident, to close a
circuit by hand once a dependency is known to be healthy again, and to clear
a client's rate limit window.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from resilient_state.adapters.rate_limit.base import AbstractRateLimiter
from resilient_state.core.auth import verify_api_key
from resilient_state.core.dependencies import get_health_monitor, get_rate_limiter
from resilient_state.core.errors import ValidationAppError
from resilient_state.core.rate_limit import enforce_rate_limit
from resilient_state.schemas.state import CircuitBreakerSummary
from resilient_state.services.health_service import ServiceHealthMonitor

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(verify_api_key), Depends(enforce_rate_limit)],
)

Monitor = Annotated[ServiceHealthMonitor, Depends(get_health_monitor)]


def _require_name(value: str, field: str) -> str:
    name = value.strip()
    if not name:
        raise ValidationAppError(code=f"invalid_{field}", message=f"{field} must not be empty")
    return name


@router.get("/circuit-breakers", response_model=dict[str, CircuitBreakerSummary])
async def list_circuit_breakers(monitor: Monitor) -> dict[str, CircuitBreakerSummary]:
    """Circuit state of every monitored service."""
    return await monitor.get_circuit_breaker_states()


@router.get("/circuit-breakers/{service}", response_model=CircuitBreakerSummary)
async def get_circuit_breaker(service: str, monitor: Monitor) -> CircuitBreakerSummary:
    return await monitor.get_circuit_breaker_summary(_require_name(service, "service"))


@router.post("/circuit-breakers/{service}/reset", response_model=CircuitBreakerSummary)
async def reset_circuit_breaker(service: str, monitor: Monitor) -> CircuitBreakerSummary:
    """Close a circuit and clear its failure count."""
    name = _require_name(service, "service")
    await monitor.reset_circuit_breaker(name)
    return await monitor.get_circuit_breaker_summary(name)


@router.delete("/rate-limits/{key:path}", status_code=status.HTTP_204_NO_CONTENT)
async def reset_rate_limit(
    key: str,
    limiter: Annotated[AbstractRateLimiter, Depends(get_rate_limiter)],
    window_seconds: Annotated[int, Query(ge=1)] = 60,
) -> None:
    """Delete the current and previous window counters for a rate limit key."""
    await limiter.reset(_require_name(key, "key"), window_seconds)
