"""Pydantic schemas for state store status, circuit breakers and service health."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

StoreMode = Literal["redis", "memory"]


class StoreStatus(BaseModel):
    """Which backend currently serves state operations."""

    available: bool = Field(..., description="True when the shared store is configured and believed reachable.")
    mode: StoreMode = Field(..., description="'redis' for the shared store, 'memory' for the local fallback.")


class CircuitState(str, Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, block calls
    HALF_OPEN = "half_open"  # Reset timeout elapsed, allow a trial request


class CircuitBreakerState(BaseModel):
    """Persisted circuit record for one protected service.

    Timestamps are UNIX epoch milliseconds. Half-open is not stored: it is
    derived from ``is_open`` and ``half_open_until`` at read time.
    """

    is_open: bool = False
    failure_count: int = Field(0, ge=0)
    last_failure_time: int | None = None
    half_open_until: int | None = None

    def state_at(self, now_ms: int) -> CircuitState:
        if not self.is_open:
            return CircuitState.CLOSED
        if self.half_open_until is not None and now_ms >= self.half_open_until:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN


class CircuitBreakerResult(BaseModel):
    """Outcome of recording a failure."""

    is_open: bool
    failure_count: int


class CircuitBreakerSummary(BaseModel):
    """Circuit view reported by health and admin endpoints."""

    is_open: bool
    failure_count: int
    state: CircuitState = CircuitState.CLOSED
    mode: StoreMode


class StoreStats(BaseModel):
    """Degraded-mode counters of the state service."""

    fallbacks: int = 0
    rechecks: int = 0
    last_failed_operation: str | None = None
    local_store: dict[str, int] = Field(default_factory=dict)


class ServiceStatus(BaseModel):
    """Last observed health of a protected dependency (per process)."""

    name: str
    healthy: bool
    last_check: datetime
    last_error: str | None = None
    consecutive_failures: int = 0


class ComprehensiveHealth(BaseModel):
    """Aggregate health document for dashboards."""

    services: dict[str, ServiceStatus] = Field(default_factory=dict)
    circuit_breakers: dict[str, CircuitBreakerSummary] = Field(default_factory=dict)
    state_store: StoreStatus
    state_store_stats: StoreStats = Field(default_factory=StoreStats)
    timestamp: str
