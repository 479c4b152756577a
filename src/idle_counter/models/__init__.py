# src/idle_counter/models/__init__.py
"""SQLAlchemy models for the Idle Counter application."""

from .counter import SINGLETON_SLOT, CounterRecord

__all__ = ["CounterRecord", "SINGLETON_SLOT"]
