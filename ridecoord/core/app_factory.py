from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) to
improve testability and separation of concerns compared to a monolithic main.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ridecoord.api.routes import auth_router, health_router, webhooks_router
from ridecoord.core.config import settings
from ridecoord.core.container import close_store
from ridecoord.core.exception_handlers import setup_exception_handlers
from ridecoord.core.logging import configure_logging
from ridecoord.core.middleware import request_id_middleware
from ridecoord.core.openapi import apply_openapi_customizations


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # Release the shared store connection pool on shutdown
    await close_store()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Ride Coordination API",
        description=(
            "Request coordination layer of the ride-sharing backend: per-user "
            "action locks, failed-attempt rate limiting with progressive blocks, "
            "exactly-once-effect payment webhook ingestion and access token "
            "revocation, all backed by a shared key-value store."
        ),
        version="0.1.0",
        lifespan=lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(auth_router, prefix="/v1")
    app.include_router(webhooks_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app
