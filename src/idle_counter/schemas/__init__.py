# src/idle_counter/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .counter import CounterEvent, CounterRead, ResetOutcome, ResetResponse

__all__ = ["CounterEvent", "CounterRead", "ResetOutcome", "ResetResponse"]
