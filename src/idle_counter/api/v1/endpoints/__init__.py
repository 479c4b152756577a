# src/idle_counter/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .counter import router as counter_router
from .system import router as system_router

__all__ = ["counter_router", "system_router"]
