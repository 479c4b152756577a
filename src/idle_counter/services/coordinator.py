"""Idempotent, race-guarded reset of an idle counter."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from idle_counter.db.time import utcnow
from idle_counter.schemas.counter import CounterEvent, ResetOutcome
from idle_counter.services.counter_store import CounterSnapshot, CounterStore
from idle_counter.services.errors import CommitConflictError, ContentionExceededError
from idle_counter.services.notifier import ChangeNotifier
from idle_counter.services.retry import sleep_before_retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResetResult:
    """What a reset attempt did and the counter state it left behind."""

    counter: CounterSnapshot
    outcome: ResetOutcome

    @property
    def committed(self) -> bool:
        return self.outcome is ResetOutcome.RESET


class ResetCoordinator:
    """Zero the counter in response to an idleness signal.

    The idleness decision is taken at ``fired_at``. Before every commit
    attempt the coordinator re-reads the counter and aborts if a mutation
    committed after that moment, so a stale trigger can never clobber fresh
    activity. Mutations committed before the decision are zeroed with the
    rest of the idle episode.
    """

    def __init__(
        self,
        store: CounterStore,
        notifier: ChangeNotifier,
        *,
        idle_window: timedelta,
        max_attempts: int = 8,
        backoff_seconds: float = 0.01,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._idle_window = idle_window
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._clock = clock

    @property
    def idle_window(self) -> timedelta:
        return self._idle_window

    def is_idle(self, counter: CounterSnapshot, now: datetime) -> bool:
        """Return True if no change has been committed for a full window."""
        return now - counter.last_updated >= self._idle_window

    async def reset(
        self, fired_at: datetime | None = None, *, require_idle: bool = False
    ) -> ResetResult:
        """Reset the counter to zero unless it is at rest or active again.

        With ``require_idle`` the counter must also have been idle for a full
        window at ``fired_at``; callers that did not measure idleness
        themselves pass it.
        """
        decided_at = fired_at or self._clock()

        for attempt in range(1, self._max_attempts + 1):
            current = await asyncio.to_thread(self._store.read)
            self._notifier.seed(current)

            if current.value == 0:
                logger.debug("Counter already at rest; reset skipped")
                return ResetResult(current, ResetOutcome.AT_REST)

            if current.last_updated > decided_at or (
                require_idle and not self.is_idle(current, decided_at)
            ):
                logger.info(
                    "Counter active within the idle window; reset aborted",
                    extra={
                        "decided_at": decided_at.isoformat(),
                        "last_updated": current.last_updated.isoformat(),
                    },
                )
                return ResetResult(current, ResetOutcome.ABORTED)

            timestamp = max(self._clock(), current.last_updated)
            try:
                committed = await asyncio.to_thread(
                    self._store.commit, current.version, 0, timestamp
                )
            except CommitConflictError:
                logger.debug("Counter reset conflicted on attempt %d", attempt)
                await sleep_before_retry(attempt, self._backoff_seconds)
                continue

            logger.info(
                "Counter reset to zero after inactivity",
                extra={"previous_value": current.value, "version": committed.version},
            )
            await self._notifier.publish(CounterEvent.from_snapshot(committed, "reset"))
            return ResetResult(committed, ResetOutcome.RESET)

        logger.warning("Counter reset exhausted %d attempts", self._max_attempts)
        raise ContentionExceededError("reset", self._max_attempts)
