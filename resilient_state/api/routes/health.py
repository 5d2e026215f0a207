from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from resilient_state.core.dependencies import get_health_monitor, get_state_service
from resilient_state.schemas.state import ComprehensiveHealth, StoreStatus
from resilient_state.services.health_service import ServiceHealthMonitor
from resilient_state.services.state_service import StateService

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
def health_check() -> dict:
    """Liveness check.

    Stays "ok" while the shared store is down: the service keeps working in
    memory mode, which ``/health/state-store`` reports.
    """

    return {"status": "ok"}


@router.get("/state-store", response_model=StoreStatus)
def state_store_status(
    store: Annotated[StateService, Depends(get_state_service)],
) -> StoreStatus:
    """Report whether state is served by the shared store or local memory."""

    return store.get_status()


@router.get("/detailed", response_model=ComprehensiveHealth)
async def detailed_health(
    monitor: Annotated[ServiceHealthMonitor, Depends(get_health_monitor)],
) -> ComprehensiveHealth:
    return await monitor.get_comprehensive_health()
