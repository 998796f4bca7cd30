from datetime import timedelta

import pytest

from fieldtracker.client.exceptions import TransportError
from fieldtracker.client.policies import EvictionPolicy, FailureKind, ItemFailure
from fieldtracker.client.queue import MutationQueue
from fieldtracker.sync.timeutils import utcnow

LATER = timedelta(minutes=5)


@pytest.fixture
def queue(store) -> MutationQueue:
    return MutationQueue(store, eviction=EvictionPolicy(max_attempts=3), backoff_base=1.0)


@pytest.mark.asyncio
async def test_enqueue_coalesces_per_entity(queue: MutationQueue):
    first = await queue.enqueue("time_entry", "guid-a", {"notes": "one"})
    second = await queue.enqueue("time_entry", "guid-a", {"notes": "two"})

    assert await queue.pending_count() == 1
    assert second.id == first.id
    assert second.version == 2
    [item] = await queue.dequeue_batch(10)
    assert item.payload == {"notes": "two"}


@pytest.mark.asyncio
async def test_same_guid_different_type_is_separate(queue: MutationQueue):
    await queue.enqueue("time_entry", "guid-a", {})
    await queue.enqueue("photo", "guid-a", {})
    assert await queue.pending_count() == 2


@pytest.mark.asyncio
async def test_dequeue_is_oldest_first_across_types(queue: MutationQueue):
    await queue.enqueue("time_entry", "a", {})
    await queue.enqueue("break_entry", "b", {})
    await queue.enqueue("photo", "c", {})
    # Re-enqueueing keeps the original position
    await queue.enqueue("time_entry", "a", {"edited": True})

    items = await queue.dequeue_batch(10)
    assert [i.entity_guid for i in items] == ["a", "b", "c"]

    limited = await queue.dequeue_batch(2)
    assert [i.entity_guid for i in limited] == ["a", "b"]

    excluded = await queue.dequeue_batch(10, exclude_ids={items[0].id})
    assert [i.entity_guid for i in excluded] == ["b", "c"]


@pytest.mark.asyncio
async def test_dequeue_leaves_items_in_queue(queue: MutationQueue):
    await queue.enqueue("time_entry", "a", {})
    await queue.dequeue_batch(10)
    assert await queue.pending_count() == 1


@pytest.mark.asyncio
async def test_transient_failure_backs_off(queue: MutationQueue):
    await queue.enqueue("time_entry", "a", {})
    [item] = await queue.dequeue_batch(10)

    outcome = await queue.record_failure(item, TransportError("timeout"))

    assert outcome.kind == FailureKind.TRANSIENT
    assert outcome.retry_count == 1
    assert not outcome.evicted
    assert outcome.next_attempt_at > utcnow()
    assert await queue.dequeue_batch(10) == []
    [retry] = await queue.dequeue_batch(10, now=utcnow() + LATER)
    assert retry.retry_count == 1
    assert retry.last_error == "timeout"


@pytest.mark.asyncio
async def test_evicted_on_third_transient_failure(queue: MutationQueue):
    await queue.enqueue("time_entry", "a", {"notes": "x"})
    [item] = await queue.dequeue_batch(10)

    first = await queue.record_failure(item, TransportError("down"))
    second = await queue.record_failure(item, TransportError("down"))
    third = await queue.record_failure(item, TransportError("still down"))

    assert not first.evicted
    assert not second.evicted
    assert third.evicted
    assert third.retry_count == 3
    assert await queue.pending_count() == 0

    [failed] = await queue.failed_items()
    assert failed.entity_guid == "a"
    assert failed.retry_count == 3
    assert failed.last_error == "still down"
    assert failed.failure_kind == "transient"
    assert failed.payload == {"notes": "x"}


@pytest.mark.asyncio
async def test_permanent_failure_evicts_immediately(queue: MutationQueue):
    await queue.enqueue("break_entry", "b", {})
    [item] = await queue.dequeue_batch(10)

    outcome = await queue.record_failure(item, ItemFailure("Break cannot start before its time entry", retryable=False))

    assert outcome.evicted
    assert outcome.kind == FailureKind.PERMANENT
    assert await queue.pending_count() == 0
    assert await queue.has_failed("break_entry", "b")


@pytest.mark.asyncio
async def test_stale_version_is_not_removed_or_failed(queue: MutationQueue):
    await queue.enqueue("time_entry", "a", {"notes": "sent"})
    [in_flight] = await queue.dequeue_batch(10)
    # Edited again while the push was in flight
    await queue.enqueue("time_entry", "a", {"notes": "newer"})

    assert await queue.record_failure(in_flight, TransportError("down")) is None
    assert not await queue.remove(in_flight)

    [item] = await queue.dequeue_batch(10)
    assert item.payload == {"notes": "newer"}
    assert item.retry_count == 0


@pytest.mark.asyncio
async def test_remove_acknowledged_item(queue: MutationQueue):
    await queue.enqueue("time_entry", "a", {})
    [item] = await queue.dequeue_batch(10)
    assert await queue.remove(item)
    assert not await queue.contains("time_entry", "a")
    assert await queue.record_failure(item, TransportError("late")) is None


@pytest.mark.asyncio
async def test_coalescing_resets_retry_state(queue: MutationQueue):
    await queue.enqueue("time_entry", "a", {})
    [item] = await queue.dequeue_batch(10)
    await queue.record_failure(item, TransportError("down"))

    await queue.enqueue("time_entry", "a", {"notes": "fixed"})

    [item] = await queue.dequeue_batch(10)
    assert item.retry_count == 0
    assert item.last_error is None
    assert item.next_attempt_at is None


@pytest.mark.asyncio
async def test_retry_and_clear_failed_items(queue: MutationQueue):
    for guid in ("a", "b"):
        await queue.enqueue("time_entry", guid, {"guid": guid})
    for item in await queue.dequeue_batch(10):
        await queue.record_failure(item, ItemFailure("invalid", retryable=False))
    assert len(await queue.failed_items()) == 2

    failed = (await queue.failed_items())[0]
    requeued = await queue.retry_failed(failed.id)
    assert requeued.retry_count == 0
    assert await queue.pending_count() == 1
    assert len(await queue.failed_items()) == 1

    assert await queue.clear_failed() == 1
    assert await queue.failed_items() == []

    with pytest.raises(LookupError):
        await queue.retry_failed(failed.id)
