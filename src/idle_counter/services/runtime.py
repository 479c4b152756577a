"""Assembly of the counter services from settings."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from idle_counter.core.settings import Settings, settings
from idle_counter.db.time import utcnow
from idle_counter.services.coordinator import ResetCoordinator, ResetResult
from idle_counter.services.counter_store import (
    CounterStore,
    MemoryCounterStore,
    SqlCounterStore,
)
from idle_counter.services.lease import LeaseBackend, MemoryLease, RedisLease
from idle_counter.services.mutation import MutationService
from idle_counter.services.notifier import ChangeNotifier
from idle_counter.services.relay import EventRelay, RedisEventRelay
from idle_counter.services.watchdog import (
    IdlenessSignal,
    LeaseExpiryIdleness,
    PolledIdleness,
)

logger = logging.getLogger(__name__)


@dataclass
class CounterRuntime:
    """The wired set of counter components shared by the HTTP layer and CLI."""

    store: CounterStore
    notifier: ChangeNotifier
    coordinator: ResetCoordinator
    idleness: IdlenessSignal
    mutations: MutationService
    poller: PolledIdleness

    async def start(self) -> None:
        await self.notifier.start()
        await self.idleness.start()
        logger.info("Counter runtime started", extra=self.idleness.describe())

    async def stop(self) -> None:
        await self.idleness.stop()
        await self.notifier.stop()
        logger.info("Counter runtime stopped")

    async def check_idle(self) -> ResetResult | None:
        """Run one poll regardless of the configured strategy.

        This backs the scheduled trigger surface: an external cron can drive
        resets even when no watchdog task runs in this process.
        """
        return await self.poller.check_once()


def build_store(config: Settings, clock: Callable[[], datetime] = utcnow) -> CounterStore:
    if config.counter_store_backend == "memory":
        return MemoryCounterStore(clock=clock)
    return SqlCounterStore(clock=clock)


def build_lease(config: Settings) -> LeaseBackend:
    if config.lease_backend == "redis":
        return RedisLease(config.redis_url, key_prefix=config.lease_key_prefix)
    return MemoryLease()


def build_relay(config: Settings) -> EventRelay | None:
    if config.notify_backend == "redis":
        return RedisEventRelay(config.redis_url, channel=config.notify_channel)
    return None


def _warn_on_process_local_backends(config: Settings) -> None:
    if config.counter_store_backend != "sql":
        return
    if config.idleness_strategy == "lease" and config.lease_backend == "memory":
        logger.warning(
            "In-process inactivity leases only see this process's mutations; "
            "use LEASE_BACKEND=redis when several workers share the store"
        )
    if config.notify_backend == "memory":
        logger.warning(
            "Change events only reach this process's subscribers; "
            "use NOTIFY_BACKEND=redis when several processes share the store"
        )


def build_counter_runtime(
    config: Settings | None = None,
    *,
    store: CounterStore | None = None,
    lease: LeaseBackend | None = None,
    relay: EventRelay | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> CounterRuntime:
    """Wire store, notifier, coordinator, watchdog and mutation service."""
    config = config or settings
    if store is None:
        _warn_on_process_local_backends(config)
        store = build_store(config, clock)
    notifier = ChangeNotifier(
        queue_size=config.notify_queue_size,
        reorder_window_seconds=config.notify_reorder_window_seconds,
        relay=relay or build_relay(config),
    )
    coordinator = ResetCoordinator(
        store,
        notifier,
        idle_window=config.idle_window,
        max_attempts=config.mutation_max_attempts,
        backoff_seconds=config.mutation_retry_backoff_seconds,
        clock=clock,
    )
    poller = PolledIdleness(
        store,
        coordinator,
        interval_seconds=config.idle_poll_interval_seconds,
        clock=clock,
    )
    idleness: IdlenessSignal
    if config.idleness_strategy == "lease":
        idleness = LeaseExpiryIdleness(
            store,
            coordinator,
            lease or build_lease(config),
            retry_seconds=config.idle_retry_seconds,
            clock=clock,
        )
    else:
        idleness = poller
    mutations = MutationService(
        store,
        notifier,
        idleness,
        max_attempts=config.mutation_max_attempts,
        backoff_seconds=config.mutation_retry_backoff_seconds,
        clock=clock,
    )
    return CounterRuntime(
        store=store,
        notifier=notifier,
        coordinator=coordinator,
        idleness=idleness,
        mutations=mutations,
        poller=poller,
    )


class _CounterRuntimeSingleton:
    """Singleton wrapper for the process-wide runtime."""

    _instance: CounterRuntime | None = None

    @classmethod
    def get_instance(cls) -> CounterRuntime:
        if cls._instance is None:
            cls._instance = build_counter_runtime()
        return cls._instance


def get_counter_runtime() -> CounterRuntime:
    """Return a singleton counter runtime."""
    return _CounterRuntimeSingleton.get_instance()
