"""Tests for ordered fan-out of counter change events."""

import asyncio
from datetime import UTC, datetime

import pytest

from idle_counter.schemas.counter import CounterEvent
from idle_counter.services.counter_store import CounterSnapshot
from idle_counter.services.notifier import ChangeNotifier

STAMP = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


def make_event(version: int, value: int | None = None, caused_by: str = "mutation") -> CounterEvent:
    return CounterEvent(
        counter_id="counter",
        value=version if value is None else value,
        last_updated=STAMP,
        version=version,
        caused_by=caused_by,
    )


def drain(subscription) -> list[int]:
    versions = []
    while not subscription.queue.empty():
        event = subscription.queue.get_nowait()
        versions.append(None if event is None else event.version)
    return versions


@pytest.mark.asyncio
async def test_events_reach_every_subscriber() -> None:
    notifier = ChangeNotifier()
    first = await notifier.subscribe()
    second = await notifier.subscribe()

    await notifier.publish(make_event(1))
    await notifier.publish(make_event(2))

    assert drain(first) == [1, 2]
    assert drain(second) == [1, 2]
    assert notifier.last_version == 2


@pytest.mark.asyncio
async def test_out_of_order_event_waits_for_gap_to_fill() -> None:
    notifier = ChangeNotifier(reorder_window_seconds=5.0)
    notifier.seed(CounterSnapshot(id="counter", value=0, last_updated=STAMP, version=0))
    subscription = await notifier.subscribe()

    await notifier.publish(make_event(2))
    assert drain(subscription) == []

    await notifier.publish(make_event(1))
    assert drain(subscription) == [1, 2]


@pytest.mark.asyncio
async def test_held_event_is_released_after_reorder_window() -> None:
    notifier = ChangeNotifier(reorder_window_seconds=0.01)
    notifier.seed(CounterSnapshot(id="counter", value=0, last_updated=STAMP, version=0))
    subscription = await notifier.subscribe()

    await notifier.publish(make_event(3))
    await asyncio.sleep(0.05)

    assert drain(subscription) == [3]
    assert notifier.last_version == 3


@pytest.mark.asyncio
async def test_superseded_event_is_dropped() -> None:
    notifier = ChangeNotifier()
    subscription = await notifier.subscribe()

    await notifier.publish(make_event(4))
    await notifier.publish(make_event(3))

    assert drain(subscription) == [4]


@pytest.mark.asyncio
async def test_seed_keeps_the_earliest_baseline() -> None:
    notifier = ChangeNotifier()
    notifier.seed(CounterSnapshot(id="counter", value=1, last_updated=STAMP, version=5))
    notifier.seed(CounterSnapshot(id="counter", value=2, last_updated=STAMP, version=9))
    assert notifier.last_version == 5


@pytest.mark.asyncio
async def test_slow_subscriber_is_disconnected() -> None:
    notifier = ChangeNotifier(queue_size=2)
    slow = await notifier.subscribe()

    for version in (1, 2, 3):
        await notifier.publish(make_event(version))

    assert notifier.subscriber_count == 0
    received = [event async for event in slow]
    assert received == []


@pytest.mark.asyncio
async def test_overflow_leaves_other_subscribers_connected() -> None:
    notifier = ChangeNotifier(queue_size=2)
    slow = await notifier.subscribe()
    await notifier.publish(make_event(1))
    await notifier.publish(make_event(2))
    fast = await notifier.subscribe()

    await notifier.publish(make_event(3))

    assert notifier.subscriber_count == 1
    assert drain(fast) == [3]
    assert drain(slow) == [None]


@pytest.mark.asyncio
async def test_listen_unsubscribes_when_closed() -> None:
    notifier = ChangeNotifier()
    received: list[CounterEvent] = []

    async def consume() -> None:
        async for event in notifier.listen():
            received.append(event)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.01)
    assert notifier.subscriber_count == 1

    await notifier.publish(make_event(1, caused_by="reset", value=0))
    await asyncio.sleep(0.01)
    await notifier.stop()
    await asyncio.wait_for(task, timeout=1.0)

    assert [e.caused_by for e in received] == ["reset"]
    assert notifier.subscriber_count == 0


@pytest.mark.asyncio
async def test_relayed_events_reach_other_notifier(make_relay, relay_hub) -> None:
    local = ChangeNotifier(relay=make_relay())
    remote = ChangeNotifier(relay=make_relay())
    await local.start()
    await remote.start()
    local_sub = await local.subscribe()
    remote_sub = await remote.subscribe()

    await local.publish(make_event(1))
    await remote.publish(make_event(2))

    assert drain(local_sub) == [1, 2]
    assert drain(remote_sub) == [1, 2]
    assert local.relayed is True

    await local.stop()
    await remote.stop()
    assert relay_hub == []


@pytest.mark.asyncio
async def test_stop_closes_subscribers_and_relay(make_relay, relay_hub) -> None:
    notifier = ChangeNotifier(relay=make_relay())
    await notifier.start()
    subscription = await notifier.subscribe()

    await notifier.stop()

    assert drain(subscription) == [None]
    assert notifier.subscriber_count == 0
    assert relay_hub == []
