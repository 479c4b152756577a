# src/idle_counter/main.py
"""Main entry point for the Idle Counter application."""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from idle_counter.api.v1 import counter_router, system_router
from idle_counter.core.logging import configure_logging
from idle_counter.core.settings import settings
from idle_counter.db.session import create_tables
from idle_counter.services.runtime import CounterRuntime, get_counter_runtime

configure_logging(settings.log_level, json_output=settings.log_json)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Idle Counter API",
    description="Shared counter that returns to zero after a window of inactivity",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(counter_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if settings.counter_store_backend == "sql" and settings.auto_create_tables:
        await asyncio.to_thread(create_tables)
    runtime = get_counter_runtime()
    await runtime.start()
    app.state.counter_runtime = runtime
    logger.info("%s %s started", settings.app_name, settings.app_version)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    runtime: CounterRuntime | None = getattr(app.state, "counter_runtime", None)
    if runtime:
        await runtime.stop()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Shared counter that returns to zero after a window of inactivity",
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("idle_counter.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
