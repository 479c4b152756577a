# src/idle_counter/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import counter_router, system_router

__all__ = ["counter_router", "system_router"]
