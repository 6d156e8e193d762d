from __future__ import annotations

from ridecoord.api.routes.auth import router as auth_router
from ridecoord.api.routes.health import router as health_router
from ridecoord.api.routes.webhooks import router as webhooks_router

__all__ = ["auth_router", "health_router", "webhooks_router"]
