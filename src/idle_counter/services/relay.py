"""Cross-process transport for counter change events.

Every process sharing a counter store publishes its committed changes to a
relay and feeds the changes it hears back into its local
:class:`~idle_counter.services.notifier.ChangeNotifier`. The notifier's
version ordering drops a process's own echoes and anything already seen.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import Awaitable, Callable

from pydantic import ValidationError
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from idle_counter.schemas.counter import CounterEvent

logger = logging.getLogger(__name__)

EventCallback = Callable[[CounterEvent], Awaitable[None]]

_RECONNECT_DELAY_SECONDS = 1.0


class EventRelay(abc.ABC):
    """Broadcast channel shared by every process serving the counter."""

    @abc.abstractmethod
    async def start(self, on_event: EventCallback) -> None:
        """Begin delivering events from other processes to ``on_event``."""

    @abc.abstractmethod
    async def stop(self) -> None:
        """Stop listening and release resources."""

    @abc.abstractmethod
    async def send(self, event: CounterEvent) -> None:
        """Broadcast a committed change to every listening process."""


class RedisEventRelay(EventRelay):
    """Relay over a Redis pub/sub channel.

    Delivery is best effort: an event published while a listener is
    reconnecting is lost to that listener, which catches up from the next
    event or a fresh read.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        channel: str = "counter:events",
        client: aioredis.Redis | None = None,
    ) -> None:
        self._redis = client if client is not None else aioredis.from_url(redis_url)
        self._channel = channel
        self._callback: EventCallback | None = None
        self._task: asyncio.Task[None] | None = None

    async def start(self, on_event: EventCallback) -> None:
        self._callback = on_event
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._callback = None
        await self._redis.aclose()

    async def send(self, event: CounterEvent) -> None:
        try:
            await self._redis.publish(self._channel, event.model_dump_json())
        except (RedisError, OSError) as exc:
            # The commit already happened; local subscribers were served.
            logger.warning("Could not relay counter event %d: %s", event.version, exc)

    async def _run(self) -> None:
        while True:
            pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
            try:
                await pubsub.subscribe(self._channel)
                async for message in pubsub.listen():
                    await self._handle_message(message)
            except (RedisError, OSError) as exc:
                logger.warning("Counter event relay error: %s", exc)
                await asyncio.sleep(_RECONNECT_DELAY_SECONDS)
            finally:
                await pubsub.aclose()

    async def _handle_message(self, message: dict) -> None:
        if message.get("type") != "message" or self._callback is None:
            return
        try:
            event = CounterEvent.model_validate_json(message.get("data") or b"")
        except ValidationError as exc:
            logger.warning("Ignoring malformed counter event: %s", exc)
            return
        await self._callback(event)
