import asyncio
from datetime import timedelta

import pytest

from fieldtracker.client.config import ClientSettings
from fieldtracker.client.engine import LAST_PULL_AT, LAST_SYNC_AT, SyncEngine
from fieldtracker.client.exceptions import AuthenticationError, RejectedError, TransportError
from fieldtracker.client.network import NetworkMonitor
from fieldtracker.client.providers import CapturedPhoto, FilePhotoBlobReader
from fieldtracker.client.queue import MutationQueue
from fieldtracker.client.tracking import TimeTrackingService
from fieldtracker.schemas.sync import (
    BreakTypeReference,
    JobReference,
    SyncConflictReport,
    SyncItemError,
    SyncPullResponse,
    SyncPushResponse,
)
from fieldtracker.sync.conflicts import ConflictSeverity, ConflictStrategy, ConflictType, Winner
from fieldtracker.sync.timeutils import to_iso, utcnow


class FakeTransport:
    """Records push bodies and answers with a configurable verdict."""

    def __init__(self):
        self.pushes = []
        self.pulls = []
        self.verdict = None
        self.error = None
        self.pull_response = SyncPullResponse(
            jobs=[JobReference(id=1, job_code="J-100", name="Warehouse", is_active=True)],
            break_types=[BreakTypeReference(id=1, name="Lunch", is_paid=False, default_minutes=30, is_active=True)],
            system_settings={"overtime_threshold_hours": 8},
            last_server_update=utcnow(),
        )

    async def push(self, body: dict) -> SyncPushResponse:
        self.pushes.append(body)
        if self.error is not None:
            raise self.error
        if self.verdict is not None:
            return await self.verdict(body)
        count = len(body["timeEntries"]) + len(body["breakEntries"]) + len(body["photos"])
        return SyncPushResponse(processed=count, succeeded=count)

    async def pull(self, since=None, device_id=None) -> SyncPullResponse:
        self.pulls.append(since)
        return self.pull_response


class FakeConnectivity:
    def __init__(self, online: bool):
        self.online = online

    async def is_online(self) -> bool:
        return self.online

    def on_change(self, callback):
        return lambda: None


class FakeCamera:
    def __init__(self, path):
        self.path = path

    async def capture(self):
        return CapturedPhoto(uri=str(self.path), width=640, height=480, file_size_bytes=self.path.stat().st_size)


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(DB_PATH=":memory:", DEVICE_ID="device-1", ENQUEUE_SYNC_DELAY_SECONDS=60)


@pytest.fixture
def queue(store) -> MutationQueue:
    return MutationQueue(store)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
async def engine(store, queue, transport, settings):
    engine = SyncEngine(store, queue, transport, settings, "device-1", blob_reader=FilePhotoBlobReader())
    yield engine
    await engine.stop()


@pytest.fixture
def tracking(store, queue, settings) -> TimeTrackingService:
    return TimeTrackingService(store, queue, settings)


async def _queued_guids(queue: MutationQueue) -> list[str]:
    return [item.entity_guid for item in await queue.dequeue_batch(100, now=utcnow() + timedelta(hours=1))]


@pytest.mark.asyncio
async def test_sync_without_network(store, queue, transport, settings):
    monitor = NetworkMonitor(FakeConnectivity(online=False))
    engine = SyncEngine(store, queue, transport, settings, "device-1", network=monitor)

    result = await engine.sync()

    assert not result.success
    assert result.message == "No network connection"
    assert transport.pushes == []


@pytest.mark.asyncio
async def test_successful_cycle_acknowledges_and_pulls(engine, tracking, queue, store, transport):
    entry = await tracking.start_job(worker_id=1, job_id=1)

    result = await engine.sync()

    assert result.success
    assert result.processed == 1
    assert result.succeeded == 1
    assert await queue.pending_count() == 0
    assert (await store.get("time_entry", entry.offline_guid)).is_synced
    assert transport.pushes[0]["deviceId"] == "device-1"
    assert transport.pushes[0]["conflictStrategy"] == "latest_wins"
    assert transport.pushes[0]["timeEntries"][0]["offlineGuid"] == entry.offline_guid
    assert await store.get_state(LAST_SYNC_AT) is not None
    assert await store.get_state(LAST_PULL_AT) == to_iso(transport.pull_response.last_server_update)
    assert [j.job_code for j in await store.list_jobs()] == ["J-100"]
    assert await store.get_setting("overtime_threshold_hours") == 8


@pytest.mark.asyncio
async def test_second_pull_is_incremental(engine, transport):
    await engine.sync()
    await engine.sync()
    assert transport.pulls[0] is None
    assert transport.pulls[1] is not None


@pytest.mark.asyncio
async def test_trigger_during_sync_is_rejected(engine, tracking, transport):
    await tracking.start_job(worker_id=1, job_id=1)
    entered = asyncio.Event()
    release = asyncio.Event()

    async def slow(body):
        entered.set()
        await release.wait()
        return SyncPushResponse(processed=1, succeeded=1)

    transport.verdict = slow
    first = asyncio.create_task(engine.sync())
    await entered.wait()

    assert engine.is_syncing
    second = await engine.sync()
    assert not second.success
    assert second.message == "Sync already in progress"

    release.set()
    result = await first
    assert result.success
    assert len(transport.pushes) == 1
    assert not engine.is_syncing


@pytest.mark.asyncio
async def test_batches_until_queue_is_drained(store, queue, transport):
    settings = ClientSettings(DB_PATH=":memory:", BATCH_SIZE=2, ENQUEUE_SYNC_DELAY_SECONDS=60)
    engine = SyncEngine(store, queue, transport, settings, "device-1")
    tracking = TimeTrackingService(store, queue, settings)
    for worker_id in (1, 2, 3):
        await tracking.start_job(worker_id=worker_id, job_id=1)

    result = await engine.sync()

    assert result.succeeded == 3
    assert [len(p["timeEntries"]) for p in transport.pushes] == [2, 1]
    assert await queue.pending_count() == 0


@pytest.mark.asyncio
async def test_per_item_errors(engine, tracking, queue, transport):
    ok = await tracking.start_job(worker_id=1, job_id=1)
    retry = await tracking.start_job(worker_id=2, job_id=1)
    bad = await tracking.start_job(worker_id=3, job_id=1)

    async def verdict(body):
        return SyncPushResponse(
            processed=3,
            succeeded=1,
            failed=2,
            errors=[
                SyncItemError(entity_guid=retry.offline_guid, entity_type="time_entry", error="Server busy", retryable=True),
                SyncItemError(entity_guid=bad.offline_guid, entity_type="time_entry", error="Unknown job 1"),
            ],
        )

    transport.verdict = verdict
    result = await engine.sync()

    assert result.success
    assert result.succeeded == 1
    assert result.failed == 2
    assert {e["entityGuid"] for e in result.errors} == {retry.offline_guid, bad.offline_guid}
    assert await _queued_guids(queue) == [retry.offline_guid]
    [failed] = await queue.failed_items()
    assert failed.entity_guid == bad.offline_guid
    assert not await queue.contains("time_entry", ok.offline_guid)
    assert engine.last_error == "Unknown job 1"


@pytest.mark.asyncio
async def test_transport_failure_counts_against_every_item(engine, tracking, queue, transport):
    await tracking.start_job(worker_id=1, job_id=1)
    await tracking.start_job(worker_id=2, job_id=1)
    transport.error = TransportError("Request timed out: POST /sync/push")

    result = await engine.sync()

    assert not result.success
    assert result.failed == 2
    assert result.message == "Request timed out: POST /sync/push"
    assert transport.pulls == []
    items = await queue.dequeue_batch(10, now=utcnow() + timedelta(hours=1))
    assert [i.retry_count for i in items] == [1, 1]
    assert await queue.dequeue_batch(10) == []


@pytest.mark.asyncio
async def test_authentication_failure_leaves_queue_untouched(engine, tracking, queue, transport):
    await tracking.start_job(worker_id=1, job_id=1)
    transport.error = AuthenticationError("Invalid or expired license", 403, ["License has expired"])

    result = await engine.sync()

    assert not result.success
    assert result.message == "Invalid or expired license"
    assert engine.last_error == "Invalid or expired license"
    [item] = await queue.dequeue_batch(10)
    assert item.retry_count == 0


@pytest.mark.asyncio
async def test_whole_batch_rejection_is_treated_as_transient(engine, tracking, queue, transport):
    await tracking.start_job(worker_id=1, job_id=1)
    transport.error = RejectedError("Batch of 200 items exceeds the limit of 100", 413)

    result = await engine.sync()

    assert not result.success
    assert await queue.failed_items() == []
    [item] = await queue.dequeue_batch(10, now=utcnow() + timedelta(hours=1))
    assert item.retry_count == 1


def _report(entry_payload: dict, server_data: dict, needs_review: bool, conflict_type=ConflictType.UPDATE_CONFLICT):
    return SyncConflictReport(
        type=conflict_type,
        entity_type="time_entry",
        entity_guid=entry_payload["offlineGuid"],
        client_data=entry_payload,
        server_data=server_data,
        resolution=Winner.SERVER,
        needs_review=needs_review,
        severity=ConflictSeverity.MEDIUM,
        conflict_id=7 if needs_review else None,
    )


@pytest.mark.asyncio
async def test_review_conflict_leaves_queue_and_is_tracked_locally(engine, tracking, queue, store, transport):
    entry = await tracking.start_job(worker_id=1, job_id=1, notes="device notes")

    async def verdict(body):
        payload = body["timeEntries"][0]
        server = {**payload, "notes": "office notes"}
        return SyncPushResponse(processed=1, succeeded=1, conflicts=[_report(payload, server, needs_review=True)])

    transport.verdict = verdict
    result = await engine.sync()

    assert result.success
    assert result.conflicts == 1
    assert result.succeeded == 1
    assert await queue.pending_count() == 0
    record = await store.get("time_entry", entry.offline_guid)
    assert record.has_conflict
    assert record.notes == "device notes"
    [conflict] = await engine.list_conflicts()
    assert conflict.entity_guid == entry.offline_guid
    assert conflict.server_conflict_id == 7
    assert conflict.server_data["notes"] == "office notes"

    # Parked conflicts are not re-queued on restart
    assert await engine.reconcile() == 0
    assert (await engine.get_status())["conflicts"] == 1


@pytest.mark.asyncio
async def test_resolving_local_conflict_with_local_version_requeues(engine, tracking, queue, store, transport):
    entry = await tracking.start_job(worker_id=1, job_id=1, notes="device notes")

    async def verdict(body):
        payload = body["timeEntries"][0]
        return SyncPushResponse(processed=1, succeeded=1, conflicts=[_report(payload, dict(payload), needs_review=True)])

    transport.verdict = verdict
    await engine.sync()

    await engine.resolve_conflict(entry.offline_guid, Winner.LOCAL)

    assert await engine.list_conflicts() == []
    record = await store.get("time_entry", entry.offline_guid)
    assert not record.has_conflict
    assert not record.is_synced
    [item] = await queue.dequeue_batch(10)
    assert item.entity_guid == entry.offline_guid

    with pytest.raises(LookupError):
        await engine.resolve_conflict(entry.offline_guid, Winner.LOCAL)


@pytest.mark.asyncio
async def test_resolving_local_conflict_with_server_version(engine, tracking, queue, store, transport):
    entry = await tracking.start_job(worker_id=1, job_id=1, notes="device notes")

    async def verdict(body):
        payload = body["timeEntries"][0]
        server = {**payload, "notes": "office notes"}
        return SyncPushResponse(processed=1, succeeded=1, conflicts=[_report(payload, server, needs_review=True)])

    transport.verdict = verdict
    await engine.sync()

    await engine.resolve_conflict(entry.offline_guid, Winner.SERVER)

    record = await store.get("time_entry", entry.offline_guid)
    assert record.notes == "office notes"
    assert record.is_synced
    assert not record.has_conflict
    assert await queue.pending_count() == 0


@pytest.mark.asyncio
async def test_server_win_is_applied_locally(engine, tracking, queue, store, transport):
    entry = await tracking.start_job(worker_id=1, job_id=1, notes="device notes")

    async def verdict(body):
        payload = body["timeEntries"][0]
        server = {
            **payload,
            "notes": "office notes",
            "updatedAt": to_iso(utcnow() + timedelta(minutes=10)),
        }
        return SyncPushResponse(processed=1, succeeded=1, conflicts=[_report(payload, server, needs_review=False)])

    transport.verdict = verdict
    result = await engine.sync()

    assert result.conflicts == 1
    record = await store.get("time_entry", entry.offline_guid)
    assert record.notes == "office notes"
    assert record.is_synced
    assert await engine.list_conflicts() == []
    assert await queue.pending_count() == 0


@pytest.mark.asyncio
async def test_server_decision_is_final_for_client_wins_device(store, queue, transport):
    settings = ClientSettings(
        DB_PATH=":memory:", DEVICE_ID="device-1", ENQUEUE_SYNC_DELAY_SECONDS=60,
        CONFLICT_STRATEGY=ConflictStrategy.CLIENT_WINS,
    )
    engine = SyncEngine(store, queue, transport, settings, "device-1")
    tracking = TimeTrackingService(store, queue, settings)
    entry = await tracking.start_job(worker_id=1, job_id=1, notes="device notes")

    async def verdict(body):
        payload = body["timeEntries"][0]
        server = {
            **payload,
            "notes": "office notes",
            "updatedAt": to_iso(utcnow() - timedelta(days=1)),
        }
        return SyncPushResponse(processed=1, succeeded=1, conflicts=[_report(payload, server, needs_review=False)])

    transport.verdict = verdict
    result = await engine.sync()
    await engine.stop()

    assert result.success
    assert result.conflicts == 1
    record = await store.get("time_entry", entry.offline_guid)
    assert record.notes == "office notes"
    assert record.is_synced
    assert not record.has_conflict
    assert await engine.list_conflicts() == []
    assert await queue.pending_count() == 0


@pytest.mark.asyncio
async def test_edit_during_push_stays_queued(engine, tracking, queue, store, transport):
    entry = await tracking.start_job(worker_id=1, job_id=1)

    async def verdict(body):
        # The worker ends the job while the first version is on the wire
        await tracking.end_job(worker_id=1)
        return SyncPushResponse(processed=1, succeeded=1)

    transport.verdict = verdict
    await engine.sync()

    record = await store.get("time_entry", entry.offline_guid)
    assert record.end_time is not None
    assert not record.is_synced
    [item] = await queue.dequeue_batch(10)
    assert item.payload["endTime"] is not None


@pytest.mark.asyncio
async def test_reconcile_requeues_orphaned_records(engine, store, queue):
    now = utcnow()
    await store.create("time_entry", {
        "offline_guid": "6f1c3a5e-4f0b-4d7e-9a51-0d3c1f5b2a10",
        "worker_id": 1,
        "job_id": 1,
        "start_time": now,
        "is_synced": False,
    })

    await engine.start()

    assert await _queued_guids(queue) == ["6f1c3a5e-4f0b-4d7e-9a51-0d3c1f5b2a10"]
    assert await engine.reconcile() == 0


@pytest.mark.asyncio
async def test_photo_is_sent_inline(engine, store, queue, transport, settings, tmp_path):
    image = tmp_path / "site.jpg"
    image.write_bytes(b"\xff\xd8\xff\xe0fake-jpeg")
    tracking = TimeTrackingService(store, queue, settings, camera=FakeCamera(image))
    entry = await tracking.start_job(worker_id=1, job_id=1)
    photo = await tracking.attach_photo(entry.offline_guid)

    result = await engine.sync()

    assert result.succeeded == 2
    [sent] = transport.pushes[0]["photos"]
    assert sent["offlineGuid"] == photo.offline_guid
    assert sent["timeEntryOfflineGuid"] == entry.offline_guid
    assert sent["base64Data"] == "/9j/4GZha2UtanBlZw=="


@pytest.mark.asyncio
async def test_unreadable_photo_is_evicted(engine, store, queue, transport, settings, tmp_path):
    image = tmp_path / "gone.jpg"
    image.write_bytes(b"data")
    tracking = TimeTrackingService(store, queue, settings, camera=FakeCamera(image))
    photo = await tracking.attach_photo()
    image.unlink()

    result = await engine.sync()

    assert result.failed == 1
    assert transport.pushes == []
    [failed] = await queue.failed_items()
    assert failed.entity_guid == photo.offline_guid


@pytest.mark.asyncio
async def test_status_is_published_around_a_cycle(engine, tracking):
    await tracking.start_job(worker_id=1, job_id=1)
    statuses = []
    engine.subscribe(statuses.append)

    await engine.sync()

    assert statuses[0]["isSyncing"] is True
    assert statuses[0]["pendingItems"] == 1
    assert statuses[-1]["isSyncing"] is False
    assert statuses[-1]["pendingItems"] == 0
    assert statuses[-1]["lastSyncAt"] is not None
