"""Tests for increment/decrement under optimistic concurrency."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from idle_counter.services.errors import CommitConflictError, ContentionExceededError
from idle_counter.services.mutation import MutationService


def drain(subscription) -> list:
    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait())
    return events


@pytest.mark.asyncio
async def test_get_or_init_creates_counter_at_zero(mutations: MutationService) -> None:
    counter = await mutations.get_or_init()
    assert counter.value == 0
    assert counter.version == 0


@pytest.mark.asyncio
async def test_increment_commits_and_publishes(mutations, notifier, clock) -> None:
    await mutations.get_or_init()
    subscription = await notifier.subscribe()
    when = clock.advance(seconds=30)

    counter = await mutations.increment()

    assert counter.value == 1
    assert counter.last_updated == when
    events = drain(subscription)
    assert [(e.value, e.caused_by) for e in events] == [(1, "mutation")]
    assert events[0].version == counter.version


@pytest.mark.asyncio
async def test_decrement_lowers_value(mutations, store, clock) -> None:
    store.load(3, clock())
    counter = await mutations.decrement()
    assert counter.value == 2


@pytest.mark.asyncio
async def test_decrement_at_zero_is_a_no_op(mutations, notifier, store, clock) -> None:
    before = await mutations.get_or_init()
    subscription = await notifier.subscribe()
    clock.advance(minutes=5)

    after = await mutations.decrement()

    assert after == before
    assert store.read().last_updated == before.last_updated
    assert drain(subscription) == []


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(mutations, notifier, store, clock) -> None:
    store.load(5, clock())
    await mutations.get_or_init()
    subscription = await notifier.subscribe()

    results = await asyncio.gather(mutations.increment(), mutations.increment())

    assert sorted(r.value for r in results) == [6, 7]
    assert store.read().value == 7
    events = drain(subscription)
    assert [e.value for e in events] == [6, 7]
    assert events[0].version < events[1].version


@pytest.mark.asyncio
async def test_timestamp_never_moves_backwards(mutations, store, clock) -> None:
    ahead = clock() + timedelta(minutes=10)
    store.load(1, ahead)

    counter = await mutations.increment()

    assert counter.last_updated == ahead


@pytest.mark.asyncio
async def test_conflict_is_retried_with_fresh_read(mutations, store, mocker, clock) -> None:
    store.read()
    real_commit = store.commit
    calls = {"n": 0}

    def flaky_commit(expected_version, new_value, new_timestamp):
        calls["n"] += 1
        if calls["n"] == 1:
            raise CommitConflictError("lost the race")
        return real_commit(expected_version, new_value, new_timestamp)

    mocker.patch.object(store, "commit", side_effect=flaky_commit)

    counter = await mutations.increment()

    assert counter.value == 1
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_contention_exhaustion_raises(store, notifier, mocker, clock) -> None:
    service = MutationService(store, notifier, max_attempts=3, backoff_seconds=0.0, clock=clock)
    mocker.patch.object(store, "commit", side_effect=CommitConflictError("always"))

    with pytest.raises(ContentionExceededError) as exc_info:
        await service.increment()

    assert exc_info.value.action == "increment"
    assert exc_info.value.attempts == 3
    assert store.commit.call_count == 3


@pytest.mark.asyncio
async def test_successful_commit_renews_idleness(store, notifier, clock) -> None:
    idleness = AsyncMock()
    service = MutationService(store, notifier, idleness, backoff_seconds=0.0, clock=clock)

    counter = await service.increment()

    idleness.renew.assert_awaited_once_with(counter)


@pytest.mark.asyncio
async def test_failed_renewal_does_not_undo_commit(store, notifier, clock) -> None:
    idleness = AsyncMock()
    idleness.renew.side_effect = RuntimeError("lease store down")
    service = MutationService(store, notifier, idleness, backoff_seconds=0.0, clock=clock)
    subscription = await notifier.subscribe()

    counter = await service.increment()

    assert counter.value == 1
    assert store.read().value == 1
    assert [e.value for e in drain(subscription)] == [1]


@pytest.mark.asyncio
async def test_no_op_decrement_does_not_renew(store, notifier, clock) -> None:
    idleness = AsyncMock()
    service = MutationService(store, notifier, idleness, backoff_seconds=0.0, clock=clock)

    await service.decrement()

    idleness.renew.assert_not_awaited()
