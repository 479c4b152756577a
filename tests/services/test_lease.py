"""Tests for the expiring lease backends."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from idle_counter.services.lease import EXPIRED_CHANNEL_PATTERN, MemoryLease, RedisLease


class Recorder:
    def __init__(self) -> None:
        self.keys: list[str] = []

    async def __call__(self, key: str) -> None:
        self.keys.append(key)


@pytest.mark.asyncio
async def test_memory_lease_fires_once_after_ttl() -> None:
    lease = MemoryLease()
    recorder = Recorder()
    await lease.start(recorder)

    await lease.arm("abc", 0.01)
    await asyncio.sleep(0.05)

    assert recorder.keys == ["abc"]
    assert await lease.remaining("abc") is None
    await lease.stop()


@pytest.mark.asyncio
async def test_memory_lease_rearm_supersedes_pending_timer() -> None:
    lease = MemoryLease()
    recorder = Recorder()
    await lease.start(recorder)

    await lease.arm("abc", 0.02)
    await lease.arm("abc", 5.0)
    await asyncio.sleep(0.05)

    assert recorder.keys == []
    remaining = await lease.remaining("abc")
    assert remaining is not None and 4.0 < remaining <= 5.0
    await lease.stop()


@pytest.mark.asyncio
async def test_memory_lease_stop_cancels_pending_timers() -> None:
    lease = MemoryLease()
    recorder = Recorder()
    await lease.start(recorder)
    await lease.arm("abc", 0.02)

    await lease.stop()
    await asyncio.sleep(0.05)

    assert recorder.keys == []


@pytest.fixture
def redis_client() -> AsyncMock:
    client = AsyncMock()
    pubsub = MagicMock()
    pubsub.psubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()

    async def listen_forever():
        await asyncio.Event().wait()
        yield {}

    pubsub.listen = listen_forever
    client.pubsub = MagicMock(return_value=pubsub)
    return client


@pytest.mark.asyncio
async def test_redis_lease_arm_sets_key_with_ttl(redis_client) -> None:
    lease = RedisLease("redis://unused", key_prefix="counter:idle:", client=redis_client)

    await lease.arm("abc", 1.5)

    redis_client.set.assert_awaited_once_with("counter:idle:abc", "1", px=1500)


@pytest.mark.asyncio
async def test_redis_lease_remaining_reads_pttl(redis_client) -> None:
    lease = RedisLease("redis://unused", client=redis_client)

    redis_client.pttl.return_value = 2500
    assert await lease.remaining("abc") == 2.5

    redis_client.pttl.return_value = -2
    assert await lease.remaining("abc") is None


@pytest.mark.asyncio
async def test_redis_lease_start_enables_notifications_and_subscribes(redis_client) -> None:
    lease = RedisLease("redis://unused", client=redis_client)

    await lease.start(Recorder())
    await asyncio.sleep(0.01)

    redis_client.config_set.assert_awaited_once_with("notify-keyspace-events", "Ex")
    pubsub = redis_client.pubsub.return_value
    pubsub.psubscribe.assert_awaited_once_with(EXPIRED_CHANNEL_PATTERN)

    await lease.stop()
    pubsub.aclose.assert_awaited()
    redis_client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_lease_dispatches_only_prefixed_expiries(redis_client) -> None:
    lease = RedisLease("redis://unused", key_prefix="counter:idle:", client=redis_client)
    recorder = Recorder()
    await lease.start(recorder)

    await lease._handle_message({"type": "pmessage", "data": b"counter:idle:abc"})
    await lease._handle_message({"type": "pmessage", "data": b"session:xyz"})
    await lease._handle_message({"type": "psubscribe", "data": 1})

    assert recorder.keys == ["abc"]
    await lease.stop()


@pytest.mark.asyncio
async def test_redis_lease_callback_errors_are_contained(redis_client) -> None:
    lease = RedisLease("redis://unused", client=redis_client)
    failing = AsyncMock(side_effect=RuntimeError("boom"))
    await lease.start(failing)

    await lease._handle_message({"type": "pmessage", "data": "counter:idle:abc"})

    failing.assert_awaited_once_with("abc")
    await lease.stop()
