"""Increment and decrement under optimistic concurrency."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from idle_counter.db.time import utcnow
from idle_counter.schemas.counter import CounterEvent
from idle_counter.services.counter_store import CounterSnapshot, CounterStore
from idle_counter.services.errors import CommitConflictError, ContentionExceededError
from idle_counter.services.notifier import ChangeNotifier
from idle_counter.services.retry import sleep_before_retry

if TYPE_CHECKING:
    from idle_counter.services.watchdog import IdlenessSignal

logger = logging.getLogger(__name__)


class MutationService:
    """Apply client mutations to the shared counter.

    Each mutation is a read-modify-commit loop against the store. A lost
    compare-and-set retries the whole loop with a fresh read, so concurrent
    increments never overwrite each other. Successful commits renew the
    inactivity window and publish a change event.
    """

    def __init__(
        self,
        store: CounterStore,
        notifier: ChangeNotifier,
        idleness: IdlenessSignal | None = None,
        *,
        max_attempts: int = 8,
        backoff_seconds: float = 0.01,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._idleness = idleness
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._clock = clock

    async def get_or_init(self) -> CounterSnapshot:
        """Return the counter, creating it at zero if needed."""
        counter = await asyncio.to_thread(self._store.read)
        self._notifier.seed(counter)
        return counter

    async def increment(self) -> CounterSnapshot:
        return await self._mutate("increment", lambda value: value + 1)

    async def decrement(self) -> CounterSnapshot:
        """Decrement, clamping at zero.

        At zero this is a pure no-op: nothing is written, the inactivity
        window is not refreshed and no event is published.
        """
        return await self._mutate("decrement", lambda value: max(value - 1, 0))

    async def _mutate(self, action: str, compute: Callable[[int], int]) -> CounterSnapshot:
        for attempt in range(1, self._max_attempts + 1):
            current = await self.get_or_init()
            new_value = compute(current.value)
            if new_value == current.value:
                logger.debug("Counter %s left unchanged at %d", action, current.value)
                return current

            timestamp = max(self._clock(), current.last_updated)
            try:
                committed = await asyncio.to_thread(
                    self._store.commit, current.version, new_value, timestamp
                )
            except CommitConflictError:
                logger.debug("Counter %s conflicted on attempt %d", action, attempt)
                await sleep_before_retry(attempt, self._backoff_seconds)
                continue

            logger.info(
                "Counter %s committed",
                action,
                extra={"value": committed.value, "version": committed.version},
            )
            await self._after_commit(committed)
            return committed

        logger.warning("Counter %s exhausted %d attempts", action, self._max_attempts)
        raise ContentionExceededError(action, self._max_attempts)

    async def _after_commit(self, committed: CounterSnapshot) -> None:
        if self._idleness is not None:
            try:
                await self._idleness.renew(committed)
            except Exception:
                # The commit stands even when the renewal fails.
                logger.exception("Failed to renew inactivity lease for %s", committed.id)
        await self._notifier.publish(CounterEvent.from_snapshot(committed, "mutation"))
