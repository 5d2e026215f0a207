from __future__ import annotations

from resilient_state.api.routes.admin import router as admin_router
from resilient_state.api.routes.health import router as health_router

__all__ = ["admin_router", "health_router"]
