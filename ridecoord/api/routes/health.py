from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from ridecoord.adapters.store.base import AbstractStore
from ridecoord.core.config import settings
from ridecoord.core.container import get_store

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Returns a simple status response without touching the shared store.
    Used by load balancers to determine whether the process is up.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(
    store: Annotated[AbstractStore, Depends(get_store)],
) -> dict:
    """Readiness check: verifies the shared store answers.

    An unreachable store surfaces as 503 through the global exception handler.
    """

    await store.ping()
    return {"status": "ok", "store": settings.store.backend}
