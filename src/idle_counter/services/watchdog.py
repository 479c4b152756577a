"""Inactivity detection for the shared counter.

Two interchangeable strategies decide when the counter has been idle for a
full window and hand off to the :class:`ResetCoordinator`:

- :class:`PolledIdleness` re-reads the counter on a fixed cadence.
- :class:`LeaseExpiryIdleness` arms an expiring lease on every mutation and
  reacts when it runs out.

The coordinator's contract is identical for both, so swapping strategies
touches neither mutation nor notification logic.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from idle_counter.db.time import utcnow
from idle_counter.schemas.counter import ResetOutcome
from idle_counter.services.coordinator import ResetCoordinator, ResetResult
from idle_counter.services.counter_store import CounterSnapshot, CounterStore
from idle_counter.services.errors import ContentionExceededError, StoreUnavailableError
from idle_counter.services.lease import LeaseBackend

logger = logging.getLogger(__name__)

_MAX_ERROR_BACKOFF_SECONDS = 30.0


def _log_unexpected_exit(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Idle poll task exited unexpectedly", exc_info=exc)


class IdlenessSignal(abc.ABC):
    """Source of "the counter has been idle for a full window" signals."""

    kind: str = "abstract"

    def __init__(
        self,
        store: CounterStore,
        coordinator: ResetCoordinator,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._clock = clock

    @abc.abstractmethod
    async def start(self) -> None:
        """Begin watching for idleness."""

    @abc.abstractmethod
    async def stop(self) -> None:
        """Stop watching; pending signals are dropped."""

    @abc.abstractmethod
    async def renew(self, counter: CounterSnapshot) -> None:
        """Record that ``counter`` was just mutated."""

    def describe(self) -> dict[str, Any]:
        return {
            "strategy": self.kind,
            "idle_window_seconds": self._coordinator.idle_window.total_seconds(),
        }


class PolledIdleness(IdlenessSignal):
    """Periodically recompute idleness from ``last_updated``.

    Stateless between polls; correctness only depends on mutations moving
    ``last_updated`` forward.
    """

    kind = "poll"

    def __init__(
        self,
        store: CounterStore,
        coordinator: ResetCoordinator,
        *,
        interval_seconds: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(store, coordinator, clock=clock)
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._stopping: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if not self.running:
            self._stopping = asyncio.Event()
            self._task = asyncio.create_task(self._run(self._stopping))
            self._task.add_done_callback(_log_unexpected_exit)

    async def stop(self) -> None:
        if self._task is None or self._stopping is None:
            return
        self._stopping.set()
        # an unexpected exit was already logged by the done callback
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def renew(self, counter: CounterSnapshot) -> None:
        # Mutations already refresh last_updated, which is all a poll reads.
        return None

    async def check_once(self) -> ResetResult | None:
        """Run a single idleness check; return the reset result if one was attempted.

        Raises:
            StoreUnavailableError: the counter could not be read.
        """
        counter = await asyncio.to_thread(self._store.read)
        now = self._clock()
        if counter.value == 0:
            return None
        if not self._coordinator.is_idle(counter, now):
            return None
        logger.info(
            "Counter idle past window; triggering reset",
            extra={"idle_seconds": counter.idle_for(now), "value": counter.value},
        )
        return await self._coordinator.reset(fired_at=now)

    def describe(self) -> dict[str, Any]:
        return super().describe() | {"poll_interval_seconds": self._interval}

    async def _run(self, stopping: asyncio.Event) -> None:
        failures = 0
        while not stopping.is_set():
            try:
                await self.check_once()
                failures = 0
            except (StoreUnavailableError, ContentionExceededError) as exc:
                failures += 1
                logger.warning("Idle poll failed: %s", exc)
            except (ValueError, TypeError) as exc:
                failures += 1
                logger.error("Idle poll encountered data error: %s", exc, exc_info=True)

            delay = self._interval
            if failures:
                delay = min(self._interval * 2**failures, _MAX_ERROR_BACKOFF_SECONDS)
            try:
                await asyncio.wait_for(stopping.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass


class LeaseExpiryIdleness(IdlenessSignal):
    """React to the expiry of a lease renewed by every mutation.

    An expiry is only a hint: the coordinator re-checks the full window
    against the store before committing. A lease that outlived a renewal it
    never saw (failed renewal, per-process timers in front of a shared
    store) is re-armed for the rest of the window instead. A reset that
    fails is re-armed after ``retry_seconds``, so the counter never stays
    non-zero without a pending lease.
    """

    kind = "lease"

    def __init__(
        self,
        store: CounterStore,
        coordinator: ResetCoordinator,
        lease: LeaseBackend,
        *,
        retry_seconds: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(store, coordinator, clock=clock)
        self._lease = lease
        self._ttl_seconds = coordinator.idle_window.total_seconds()
        self._retry_seconds = retry_seconds

    async def start(self) -> None:
        await self._lease.start(self._on_expired)
        await self._resume()

    async def stop(self) -> None:
        await self._lease.stop()

    async def renew(self, counter: CounterSnapshot) -> None:
        await self._lease.arm(counter.id, self._ttl_seconds)

    def describe(self) -> dict[str, Any]:
        return super().describe() | {
            "lease_backend": type(self._lease).__name__,
            "retry_seconds": self._retry_seconds,
        }

    def _remaining(self, counter: CounterSnapshot) -> float:
        return max(self._ttl_seconds - counter.idle_for(self._clock()), 0.0)

    async def _resume(self) -> None:
        """Re-arm a non-zero counter that has no pending lease."""
        try:
            counter = await asyncio.to_thread(self._store.read)
        except StoreUnavailableError as exc:
            logger.warning("Could not resume inactivity lease: %s", exc)
            return
        if counter.value == 0:
            return
        if await self._lease.remaining(counter.id) is not None:
            return
        remaining = self._remaining(counter)
        logger.info("Re-arming inactivity lease on start", extra={"remaining_seconds": remaining})
        await self._lease.arm(counter.id, remaining)

    async def _on_expired(self, counter_id: str) -> None:
        fired_at = self._clock()
        logger.info("Inactivity lease expired for %s", counter_id)
        try:
            result = await self._coordinator.reset(fired_at=fired_at, require_idle=True)
        except (StoreUnavailableError, ContentionExceededError) as exc:
            logger.warning(
                "Idle reset failed; retrying in %.1fs: %s", self._retry_seconds, exc
            )
            await self._lease.arm(counter_id, self._retry_seconds)
            return
        if result.outcome is ResetOutcome.ABORTED:
            remaining = self._remaining(result.counter)
            logger.info(
                "Counter active within the window; re-arming inactivity lease",
                extra={"remaining_seconds": remaining},
            )
            await self._lease.arm(result.counter.id, remaining)
