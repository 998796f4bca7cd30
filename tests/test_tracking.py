from datetime import timedelta

import pytest

from fieldtracker.client.config import ClientSettings
from fieldtracker.client.exceptions import TrackingError
from fieldtracker.client.providers import LocationFix
from fieldtracker.client.queue import MutationQueue
from fieldtracker.client.tracking import TimeTrackingService
from fieldtracker.schemas.sync import SyncPullResponse
from fieldtracker.sync.timeutils import utcnow


class FixedLocation:
    async def get_current_fix(self, high_accuracy: bool = True):
        return LocationFix(latitude=40.7128, longitude=-74.006, accuracy=5.0)


class BrokenLocation:
    async def get_current_fix(self, high_accuracy: bool = True):
        raise PermissionError("location permission denied")


@pytest.fixture
def queue(store) -> MutationQueue:
    return MutationQueue(store)


@pytest.fixture
def changes():
    return []


@pytest.fixture
def tracking(store, queue, changes) -> TimeTrackingService:
    return TimeTrackingService(
        store, queue, ClientSettings(DB_PATH=":memory:"),
        location=FixedLocation(), on_change=lambda: changes.append(1),
    )


async def _backdate(store, guid: str, hours: float):
    await store.update("time_entry", guid, {"start_time": utcnow() - timedelta(hours=hours)})


@pytest.mark.asyncio
async def test_start_job_records_and_queues(tracking, store, queue, changes):
    entry = await tracking.start_job(worker_id=1, job_id=2, notes="north site")

    saved = await store.get("time_entry", entry.offline_guid)
    assert saved.job_id == 2
    assert saved.start_latitude == 40.7128
    assert not saved.is_synced
    [item] = await queue.dequeue_batch(10)
    assert item.entity_type == "time_entry"
    assert item.payload["offlineGuid"] == entry.offline_guid
    assert item.payload["notes"] == "north site"
    assert changes == [1]


@pytest.mark.asyncio
async def test_only_one_active_job_per_worker(tracking):
    await tracking.start_job(worker_id=1, job_id=1)
    with pytest.raises(TrackingError):
        await tracking.start_job(worker_id=1, job_id=2)
    # Another worker on the same device is independent
    await tracking.start_job(worker_id=2, job_id=1)


@pytest.mark.asyncio
async def test_end_job_computes_hours_and_coalesces(tracking, store, queue):
    entry = await tracking.start_job(worker_id=1, job_id=1)
    await _backdate(store, entry.offline_guid, 10)

    ended = await tracking.end_job(worker_id=1)

    assert ended.regular_hours == 8.0
    assert ended.overtime_hours == pytest.approx(2.0, abs=0.02)
    assert ended.end_longitude == -74.006
    assert await queue.pending_count() == 1
    [item] = await queue.dequeue_batch(10)
    assert item.version == 2
    assert item.payload["endTime"] is not None


@pytest.mark.asyncio
async def test_overtime_threshold_comes_from_cached_settings(tracking, store):
    await store.replace_reference_data(SyncPullResponse(
        system_settings={"overtime_threshold_hours": 6},
        last_server_update=utcnow(),
    ))
    entry = await tracking.start_job(worker_id=1, job_id=1)
    await _backdate(store, entry.offline_guid, 7)

    ended = await tracking.end_job(worker_id=1)

    assert ended.regular_hours == 6.0
    assert ended.overtime_hours == pytest.approx(1.0, abs=0.02)


@pytest.mark.asyncio
async def test_end_job_without_active_job(tracking):
    with pytest.raises(TrackingError):
        await tracking.end_job(worker_id=1)


@pytest.mark.asyncio
async def test_break_lifecycle(tracking, store, queue):
    entry = await tracking.start_job(worker_id=1, job_id=1)
    started = await tracking.start_break(worker_id=1, break_type_id=3)
    with pytest.raises(TrackingError):
        await tracking.start_break(worker_id=1, break_type_id=3)

    ended = await tracking.end_break(worker_id=1)

    assert ended.offline_guid == started.offline_guid
    assert ended.duration_minutes == 0
    assert ended.time_entry_offline_guid == entry.offline_guid
    types = [item.entity_type for item in await queue.dequeue_batch(10)]
    assert types == ["time_entry", "break_entry"]
    with pytest.raises(TrackingError):
        await tracking.end_break(worker_id=1)


@pytest.mark.asyncio
async def test_break_requires_active_job(tracking):
    with pytest.raises(TrackingError):
        await tracking.start_break(worker_id=1, break_type_id=1)


@pytest.mark.asyncio
async def test_end_job_closes_open_break(tracking, store):
    entry = await tracking.start_job(worker_id=1, job_id=1)
    open_break = await tracking.start_break(worker_id=1, break_type_id=1)

    await tracking.end_job(worker_id=1)

    closed = await store.get("break_entry", open_break.offline_guid)
    assert closed.end_time is not None
    assert await store.get_active_break(entry.offline_guid) is None


@pytest.mark.asyncio
async def test_missing_location_does_not_block(store, queue):
    tracking = TimeTrackingService(store, queue, ClientSettings(DB_PATH=":memory:"), location=BrokenLocation())
    entry = await tracking.start_job(worker_id=1, job_id=1)
    assert entry.start_latitude is None


@pytest.mark.asyncio
async def test_attach_photo_needs_camera(tracking):
    with pytest.raises(TrackingError):
        await tracking.attach_photo()
