# src/idle_counter/services/__init__.py
"""Business logic services for the Idle Counter application."""

from .coordinator import ResetCoordinator, ResetResult
from .counter_store import CounterSnapshot, CounterStore, MemoryCounterStore, SqlCounterStore
from .mutation import MutationService
from .notifier import ChangeNotifier
from .watchdog import IdlenessSignal, LeaseExpiryIdleness, PolledIdleness

__all__ = [
    "ChangeNotifier",
    "CounterSnapshot",
    "CounterStore",
    "IdlenessSignal",
    "LeaseExpiryIdleness",
    "MemoryCounterStore",
    "MutationService",
    "PolledIdleness",
    "ResetCoordinator",
    "ResetResult",
    "SqlCounterStore",
]
