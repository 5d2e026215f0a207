"""Application factory for the FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) so tests can build isolated instances.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from resilient_state.api.routes import admin_router, health_router
from resilient_state.core.config import settings
from resilient_state.core.dependencies import get_state_service
from resilient_state.core.exception_handlers import setup_exception_handlers
from resilient_state.core.logging import configure_logging
from resilient_state.core.middleware import request_id_middleware
from resilient_state.core.openapi import TAGS_METADATA, apply_openapi_customizations

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the state service tickers with the app and stop them on shutdown."""
    store = get_state_service()
    store.start()
    logger.info("app.started", extra={"state_store_mode": store.get_status().mode})
    try:
        yield
    finally:
        await store.stop()
        logger.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Resilient State Service",
        description=(
            "Shared rate limiting and circuit breaking for external dependencies, "
            "backed by a Redis REST store with automatic fallback to process "
            "memory when the store is unreachable."
        ),
        version="0.1.0",
        openapi_tags=TAGS_METADATA,
        lifespan=lifespan,
        debug=settings.app.debug,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
