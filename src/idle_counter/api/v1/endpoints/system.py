"""System and transparency endpoints for the Idle Counter API."""

from __future__ import annotations

import asyncio
import time

from fastapi import APIRouter

from idle_counter.api.v1.dependencies import RuntimeDep
from idle_counter.core.settings import settings

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_public_config(runtime: RuntimeDep) -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Excludes secrets and connection strings; suitable for transparency UIs.
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "debug": settings.debug,
        },
        "counter": {
            "store_backend": settings.counter_store_backend,
            "idleness": runtime.idleness.describe(),
            "max_attempts": settings.mutation_max_attempts,
        },
        "notifications": {
            "backend": settings.notify_backend,
            "relayed": runtime.notifier.relayed,
            "queue_size": settings.notify_queue_size,
            "subscribers": runtime.notifier.subscriber_count,
        },
        "reset_trigger": {"configured": bool(settings.reset_secret)},
    }


@router.get("/health")
async def get_system_health(runtime: RuntimeDep) -> dict[str, object]:
    """Health check that pings the counter store.

    Returns:
        Dictionary with overall status, component health, and version info
    """
    store_healthy = await asyncio.to_thread(runtime.store.ping)
    return {
        "status": "healthy" if store_healthy else "unhealthy",
        "timestamp": int(time.time()),
        "components": {
            "store": "healthy" if store_healthy else "unhealthy",
            "idleness": runtime.idleness.kind,
        },
        "version": settings.app_version,
    }
