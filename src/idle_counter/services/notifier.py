"""In-process fan-out of committed counter changes.

Events are delivered to each subscriber in ``version`` order. Commits finish
on worker threads, so two publishers may reach :meth:`ChangeNotifier.publish`
out of commit order; an event that arrives ahead of a missing version is held
briefly until the gap fills, then released in order regardless. With an
:class:`~idle_counter.services.relay.EventRelay` attached, changes committed
by other processes are merged into the same ordering.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from collections.abc import AsyncIterator

from idle_counter.schemas.counter import CounterEvent
from idle_counter.services.counter_store import CounterSnapshot
from idle_counter.services.relay import EventRelay

logger = logging.getLogger(__name__)


class ChangeNotifier:
    """Broadcast counter events to interested subscribers via async queues."""

    def __init__(
        self,
        queue_size: int = 100,
        reorder_window_seconds: float = 0.5,
        relay: EventRelay | None = None,
    ) -> None:
        self._subscribers: list[Subscription] = []
        self._queue_size = queue_size
        self._reorder_window = reorder_window_seconds
        self._lock = asyncio.Lock()
        self._last_version: int | None = None
        self._held: list[tuple[int, int, CounterEvent]] = []
        self._arrivals = itertools.count()
        self._release_handle: asyncio.TimerHandle | None = None
        self._relay = relay

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def last_version(self) -> int | None:
        return self._last_version

    @property
    def relayed(self) -> bool:
        return self._relay is not None

    def seed(self, counter: CounterSnapshot) -> None:
        """Establish the ordering baseline from a read.

        Only the first seed counts: any read precedes the commits made after
        it, so the earliest one is a safe lower bound.
        """
        if self._last_version is None:
            self._last_version = counter.version

    async def start(self) -> None:
        """Start receiving changes committed by other processes."""
        if self._relay is not None:
            await self._relay.start(self._accept)

    async def stop(self) -> None:
        """Stop the relay and end every subscriber stream."""
        if self._relay is not None:
            await self._relay.stop()
        async with self._lock:
            for subscriber in self._subscribers:
                subscriber.close()
            self._subscribers.clear()
            self._held.clear()
            if self._release_handle is not None:
                self._release_handle.cancel()
                self._release_handle = None

    async def publish(self, event: CounterEvent) -> None:
        """Publish a change committed by this process."""
        await self._accept(event)
        if self._relay is not None:
            await self._relay.send(event)

    async def _accept(self, event: CounterEvent) -> None:
        """Deliver ``event`` to local subscribers in version order."""

        async with self._lock:
            last = self._last_version
            if last is None or event.version == last + 1:
                self._deliver(event)
                self._drain_held()
            elif event.version <= last:
                logger.debug(
                    "Dropping superseded counter event",
                    extra={"version": event.version, "last_version": last},
                )
            else:
                heapq.heappush(self._held, (event.version, next(self._arrivals), event))
                self._schedule_release()

    async def subscribe(self) -> Subscription:
        """Register a subscriber; events published from now on are queued for it."""

        subscription = Subscription(asyncio.Queue(maxsize=self._queue_size))
        async with self._lock:
            self._subscribers.append(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        async with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    async def listen(self) -> AsyncIterator[CounterEvent]:
        """Yield events until the subscriber is disconnected."""

        subscription = await self.subscribe()
        try:
            async for event in subscription:
                yield event
        finally:
            await self.unsubscribe(subscription)

    # --- Internal helpers -------------------------------------------------------

    def _deliver(self, event: CounterEvent) -> None:
        self._last_version = event.version
        for subscriber in list(self._subscribers):
            try:
                subscriber.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "Disconnecting slow counter subscriber",
                    extra={"queue_size": self._queue_size},
                )
                self._subscribers.remove(subscriber)
                subscriber.close()

    def _drain_held(self) -> None:
        while self._held and self._last_version is not None:
            version, _, event = self._held[0]
            if version > self._last_version + 1:
                break
            heapq.heappop(self._held)
            if version == self._last_version + 1:
                self._deliver(event)
        if not self._held and self._release_handle is not None:
            self._release_handle.cancel()
            self._release_handle = None

    def _schedule_release(self) -> None:
        if self._release_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._release_handle = loop.call_later(self._reorder_window, self._release_held)

    def _release_held(self) -> None:
        self._release_handle = None
        if not self._held:
            return
        logger.warning(
            "Releasing counter events past a version gap",
            extra={"last_version": self._last_version, "held": len(self._held)},
        )
        while self._held:
            version, _, event = heapq.heappop(self._held)
            if self._last_version is None or version > self._last_version:
                self._deliver(event)


class Subscription:
    """Queue of pending events for one subscriber; iterating ends on disconnect."""

    def __init__(self, queue: asyncio.Queue[CounterEvent | None]) -> None:
        self.queue = queue

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> CounterEvent:
        event = await self.queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        """Replace pending events with an end-of-stream marker."""
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(None)
