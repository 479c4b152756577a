"""Expiring-marker backends for the inactivity lease.

A lease is armed with a TTL and re-armed (never stacked) on every renewal.
When a lease runs out without renewal the backend invokes the expiry
callback with the lease key, once per arming.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import Awaitable, Callable

from redis import asyncio as aioredis
from redis.exceptions import RedisError, ResponseError

logger = logging.getLogger(__name__)

ExpiryCallback = Callable[[str], Awaitable[None]]

EXPIRED_CHANNEL_PATTERN = "__keyevent@*__:expired"
_RECONNECT_DELAY_SECONDS = 1.0


class LeaseBackend(abc.ABC):
    """Expiring marker primitive: ``arm(key, ttl)`` plus an expiry signal."""

    @abc.abstractmethod
    async def start(self, on_expired: ExpiryCallback) -> None:
        """Begin delivering expiry signals to ``on_expired``."""

    @abc.abstractmethod
    async def stop(self) -> None:
        """Stop delivering expiry signals and release resources."""

    @abc.abstractmethod
    async def arm(self, key: str, ttl_seconds: float) -> None:
        """Create or renew the lease for ``key``, superseding any pending one."""

    @abc.abstractmethod
    async def remaining(self, key: str) -> float | None:
        """Return seconds left on the lease, or None when none is pending."""


class MemoryLease(LeaseBackend):
    """Lease timers kept on the running event loop.

    Leases do not survive a restart; the watchdog re-arms on start.
    """

    def __init__(self) -> None:
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._callback: ExpiryCallback | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    async def start(self, on_expired: ExpiryCallback) -> None:
        self._callback = on_expired

    async def stop(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._callback = None
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def arm(self, key: str, ttl_seconds: float) -> None:
        loop = asyncio.get_running_loop()
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._timers[key] = loop.call_later(max(ttl_seconds, 0.0), self._expire, key)

    async def remaining(self, key: str) -> float | None:
        handle = self._timers.get(key)
        if handle is None:
            return None
        return max(handle.when() - asyncio.get_running_loop().time(), 0.0)

    def _expire(self, key: str) -> None:
        self._timers.pop(key, None)
        if self._callback is None:
            return
        task = asyncio.get_running_loop().create_task(self._callback(key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


class RedisLease(LeaseBackend):
    """Lease stored as a Redis key with a TTL.

    Expiry is observed through keyspace notifications, which the backend
    tries to enable on start. Managed Redis offerings may refuse
    ``CONFIG SET``; notifications then have to be enabled server-side.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        key_prefix: str = "counter:idle:",
        client: aioredis.Redis | None = None,
    ) -> None:
        self._redis = client if client is not None else aioredis.from_url(redis_url)
        self._prefix = key_prefix
        self._callback: ExpiryCallback | None = None
        self._task: asyncio.Task[None] | None = None

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def start(self, on_expired: ExpiryCallback) -> None:
        self._callback = on_expired
        try:
            await self._redis.config_set("notify-keyspace-events", "Ex")
        except ResponseError as exc:
            logger.warning("Could not enable Redis keyspace notifications: %s", exc)
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
        await self._redis.aclose()

    async def arm(self, key: str, ttl_seconds: float) -> None:
        await self._redis.set(self._key(key), "1", px=max(1, int(ttl_seconds * 1000)))

    async def remaining(self, key: str) -> float | None:
        pttl = await self._redis.pttl(self._key(key))
        if pttl is None or pttl < 0:
            return None
        return pttl / 1000.0

    async def _run(self) -> None:
        while True:
            pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
            try:
                await pubsub.psubscribe(EXPIRED_CHANNEL_PATTERN)
                async for message in pubsub.listen():
                    await self._handle_message(message)
            except (RedisError, OSError) as exc:
                logger.warning("Redis lease listener error: %s", exc)
                await asyncio.sleep(_RECONNECT_DELAY_SECONDS)
            finally:
                await pubsub.aclose()

    async def _handle_message(self, message: dict) -> None:
        if message.get("type") != "pmessage":
            return
        data = message.get("data")
        key = data.decode("utf-8") if isinstance(data, bytes) else str(data)
        if not key.startswith(self._prefix) or self._callback is None:
            return
        counter_id = key[len(self._prefix):]
        try:
            await self._callback(counter_id)
        except Exception:
            logger.exception("Lease expiry handler failed for %s", counter_id)
