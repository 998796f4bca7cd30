"""
Sync Engine: drains the mutation queue to the server and pulls reference data.

Only one cycle runs at a time. A trigger that arrives mid-cycle returns
at once with an "already in progress" result; nothing is queued behind it.
"""
from dataclasses import dataclass, field
from typing import Optional
import asyncio
import base64
import logging

from fieldtracker.client.config import ClientSettings
from fieldtracker.client.events import StatusBroadcaster, Subscription
from fieldtracker.client.exceptions import AuthenticationError, RejectedError, SyncError, TransportError
from fieldtracker.client.network import NetworkMonitor
from fieldtracker.client.policies import ItemFailure
from fieldtracker.client.providers import PhotoBlobReader
from fieldtracker.client.queue import MutationQueue
from fieldtracker.client.records import LocalConflict, QueueItem
from fieldtracker.client.store import BREAK_ENTRY, PHOTO, TIME_ENTRY, OfflineStore
from fieldtracker.client.transport import SyncTransport
from fieldtracker.schemas.sync import SyncConflictReport, SyncPushResponse
from fieldtracker.sync.conflicts import ConflictType, Winner
from fieldtracker.sync.timeutils import parse_datetime, to_iso, utcnow

logger = logging.getLogger(__name__)

PUSH_KEYS = {
    TIME_ENTRY: "timeEntries",
    BREAK_ENTRY: "breakEntries",
    PHOTO: "photos",
}

LAST_SYNC_AT = "last_sync_at"
LAST_PULL_AT = "last_pull_at"


@dataclass
class SyncResult:
    success: bool = True
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    conflicts: int = 0
    errors: list[dict] = field(default_factory=list)
    message: Optional[str] = None

    def add_error(self, entity_type: str, entity_guid: str, error: str):
        self.errors.append({"entityType": entity_type, "entityGuid": entity_guid, "error": error})

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "conflicts": self.conflicts,
            "errors": list(self.errors),
            "message": self.message,
        }


class SyncEngine:
    def __init__(
        self,
        store: OfflineStore,
        queue: MutationQueue,
        transport: SyncTransport,
        settings: ClientSettings,
        device_id: str,
        network: Optional[NetworkMonitor] = None,
        blob_reader: Optional[PhotoBlobReader] = None,
    ):
        self.store = store
        self.queue = queue
        self.transport = transport
        self.settings = settings
        self.device_id = device_id
        self.network = network
        self.blob_reader = blob_reader
        self.status = StatusBroadcaster()
        self.last_error: Optional[str] = None
        self._syncing = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._scheduled: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self.network.is_online if self.network is not None else True

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def subscribe(self, listener) -> Subscription:
        return self.status.subscribe(listener)

    async def start(self):
        recovered = await self.reconcile()
        if recovered:
            logger.info(f"Re-queued {recovered} record(s) missing from the sync queue")

    async def stop(self):
        """Cancel any scheduled sync and let an in-flight cycle finish."""
        if self._scheduled is not None and not self._scheduled.done():
            self._scheduled.cancel()
            try:
                await self._scheduled
            except asyncio.CancelledError:
                pass
        self._scheduled = None
        await self._idle.wait()

    async def get_status(self) -> dict:
        return {
            "isOnline": self.is_online,
            "isSyncing": self._syncing,
            "pendingItems": await self.queue.pending_count(),
            "failedItems": len(await self.queue.failed_items()),
            "conflicts": await self.store.count_conflicts(),
            "lastSyncAt": await self.store.get_state(LAST_SYNC_AT),
            "lastError": self.last_error,
        }

    async def _publish(self):
        self.status.publish(await self.get_status())

    def schedule_sync(self, delay: Optional[float] = None) -> asyncio.Task:
        """
        Start a sync shortly, typically right after a local change.

        Calls made while one is already scheduled share it, so a burst of
        edits produces one sync.
        """
        if self._scheduled is not None and not self._scheduled.done():
            return self._scheduled
        delay = self.settings.ENQUEUE_SYNC_DELAY_SECONDS if delay is None else delay
        self._scheduled = asyncio.create_task(self._delayed_sync(delay))
        return self._scheduled

    async def _delayed_sync(self, delay: float) -> SyncResult:
        await asyncio.sleep(delay)
        try:
            return await self.sync()
        except Exception as e:
            # Nobody awaits a scheduled sync; the error is logged and surfaced in status
            logger.error("Scheduled sync failed", exc_info=True)
            self.last_error = str(e)
            return SyncResult(success=False, message=str(e))

    async def sync(self) -> SyncResult:
        """Run one push then pull cycle."""
        if self._syncing:
            return SyncResult(success=False, message="Sync already in progress")
        if not self.is_online:
            return SyncResult(success=False, message="No network connection")

        self._syncing = True
        self._idle.clear()
        try:
            await self._publish()
            result = await self._push()
            if result.success:
                await self._pull(result)
            if result.success:
                await self.store.set_state(LAST_SYNC_AT, to_iso(utcnow()))
                self.last_error = result.errors[-1]["error"] if result.errors else None
            logger.info(
                f"Sync finished: {result.processed} processed, {result.succeeded} succeeded, "
                f"{result.failed} failed, {result.conflicts} conflicts"
                + (f" ({result.message})" if result.message else "")
            )
            return result
        finally:
            self._syncing = False
            self._idle.set()
            await self._publish()

    def _abort(self, result: SyncResult, error: SyncError):
        result.success = False
        result.message = error.message
        self.last_error = error.message

    # Push

    async def _push(self) -> SyncResult:
        result = SyncResult()
        attempted: set[int] = set()

        while True:
            items = await self.queue.dequeue_batch(self.settings.BATCH_SIZE, exclude_ids=attempted)
            if not items:
                break
            attempted.update(item.id for item in items)

            body, sendable = await self._build_body(items, result)
            if not sendable:
                continue

            try:
                response = await self.transport.push(body)
            except AuthenticationError as e:
                # Not the items' fault; leave them queued untouched
                logger.warning(f"Push refused: {e.message}")
                self._abort(result, e)
                break
            except TransportError as e:
                logger.warning(f"Push failed: {e.message}")
                for item in sendable:
                    await self.queue.record_failure(item, e)
                result.processed += len(sendable)
                result.failed += len(sendable)
                self._abort(result, e)
                break
            except RejectedError as e:
                # A whole-batch rejection says nothing about any single item,
                # so each one spends a transient attempt instead of being evicted
                logger.warning(f"Push rejected: {e.message}")
                failure = ItemFailure(e.message, retryable=True)
                for item in sendable:
                    await self.queue.record_failure(item, failure)
                result.processed += len(sendable)
                result.failed += len(sendable)
                self._abort(result, e)
                break

            await self._apply_verdicts(sendable, response, result)

        return result

    async def _build_body(self, items: list[QueueItem], result: SyncResult) -> tuple[dict, list[QueueItem]]:
        last_sync = await self.store.get_state(LAST_SYNC_AT)
        body = {
            "timeEntries": [],
            "breakEntries": [],
            "photos": [],
            "deviceId": self.device_id,
            "lastSyncAt": last_sync,
            "conflictStrategy": self.settings.CONFLICT_STRATEGY.value,
        }
        sendable = []
        for item in items:
            payload = dict(item.payload)
            if item.entity_type == PHOTO:
                try:
                    payload["base64Data"] = await self._read_photo(item.entity_guid)
                except OSError as e:
                    message = f"Photo file unreadable: {e}"
                    await self.queue.record_failure(item, ItemFailure(message, retryable=False))
                    result.processed += 1
                    result.failed += 1
                    result.add_error(item.entity_type, item.entity_guid, message)
                    continue
            body[PUSH_KEYS[item.entity_type]].append(payload)
            sendable.append(item)
        return body, sendable

    async def _read_photo(self, guid: str) -> Optional[str]:
        if self.blob_reader is None:
            return None
        photo = await self.store.get(PHOTO, guid)
        if photo is None:
            return None
        data = await self.blob_reader.read(photo.file_uri)
        return base64.b64encode(data).decode("ascii")

    async def _apply_verdicts(self, items: list[QueueItem], response: SyncPushResponse, result: SyncResult):
        errors = {(e.entity_type, e.entity_guid): e for e in response.errors}
        conflicts = {(c.entity_type, c.entity_guid): c for c in response.conflicts}

        for item in items:
            key = (item.entity_type, item.entity_guid)
            result.processed += 1
            try:
                if key in errors:
                    error = errors[key]
                    await self.queue.record_failure(item, ItemFailure(error.error, error.retryable))
                    result.failed += 1
                    result.add_error(item.entity_type, item.entity_guid, error.error)
                elif key in conflicts:
                    await self._apply_conflict(item, conflicts[key])
                    result.conflicts += 1
                    result.succeeded += 1
                else:
                    await self._acknowledge(item)
                    result.succeeded += 1
            except Exception as e:
                # One item's local bookkeeping failing must not stop the rest
                logger.error(f"Failed to apply verdict for {item.entity_type} {item.entity_guid}", exc_info=True)
                result.failed += 1
                result.add_error(item.entity_type, item.entity_guid, f"Local error: {e}")

    async def _acknowledge(self, item: QueueItem):
        async with self.store.transaction() as s:
            # A newer edit queued while this one was in flight keeps the record unsynced
            if await self.queue.remove(item, session=s):
                record = await self.store.get(item.entity_type, item.entity_guid, session=s)
                if record is not None:
                    record.is_synced = True

    async def _apply_conflict(self, item: QueueItem, report: SyncConflictReport):
        if report.needs_review:
            await self._park_for_review(item, report, "Needs manual review")
            return

        # The server already settled it in favour of its copy; the device follows
        async with self.store.transaction() as s:
            if await self.queue.remove(item, session=s):
                await self.store.apply_server_record(item.entity_type, report.server_data, session=s)

    async def _park_for_review(self, item: QueueItem, report: SyncConflictReport, reason: str):
        """
        The server has accepted the item, so it leaves the retry queue and
        is tracked only in the local conflict list from here on.
        """
        async with self.store.transaction() as s:
            await self.queue.remove(item, session=s)
            record = await self.store.get(item.entity_type, item.entity_guid, session=s)
            if record is not None:
                record.has_conflict = True
                record.conflict_reason = reason
                record.is_synced = False
            await self.store.add_conflict(
                {
                    "entity_type": item.entity_type,
                    "entity_guid": item.entity_guid,
                    "conflict_type": report.type.value,
                    "severity": report.severity.value,
                    "client_data": item.payload,
                    "server_data": report.server_data,
                    "conflict_with": report.conflict_with,
                    "server_conflict_id": report.conflict_id,
                },
                session=s,
            )
        logger.info(f"{item.entity_type} {item.entity_guid} parked for review ({report.type.value})")

    # Pull

    async def _pull(self, result: SyncResult):
        since = parse_datetime(await self.store.get_state(LAST_PULL_AT))
        try:
            pull = await self.transport.pull(since, self.device_id)
        except SyncError as e:
            logger.warning(f"Pull failed: {e.message}")
            self._abort(result, e)
            return

        async with self.store.transaction() as s:
            await self.store.replace_reference_data(pull, session=s)
            await self.store.set_state(LAST_PULL_AT, to_iso(pull.last_server_update), session=s)
        logger.debug(
            f"Pulled {len(pull.workers)} workers, {len(pull.jobs)} jobs, {len(pull.break_types)} break types"
        )

    # Recovery and review

    async def reconcile(self) -> int:
        """
        Re-queue unsynced records that have no queue item.

        Covers a crash between writing a record and enqueueing it. Records
        parked as conflicts or evicted to the failed list are left alone.
        """
        recovered = 0
        async with self.store.transaction() as s:
            for entity_type, record in await self.store.unsynced_records(session=s):
                guid = record.offline_guid
                if await self.queue.contains(entity_type, guid, session=s):
                    continue
                if await self.queue.has_failed(entity_type, guid, session=s):
                    continue
                await self.queue.enqueue(entity_type, guid, self.store.to_payload(entity_type, record), session=s)
                recovered += 1
        return recovered

    async def list_conflicts(self) -> list[LocalConflict]:
        return await self.store.list_conflicts()

    async def resolve_conflict(self, guid: str, keep: Winner) -> None:
        """
        Settle a parked conflict on this device.

        Keeping the local version re-queues it with a fresh timestamp so it
        wins a latest-wins comparison on the server.
        """
        keep = Winner(keep)
        async with self.store.transaction() as s:
            conflict = await self.store.get_conflict(guid, session=s)
            if conflict is None:
                raise LookupError(f"No conflict recorded for {guid}")
            record = await self.store.get(conflict.entity_type, guid, session=s)

            if keep == Winner.LOCAL:
                if record is None:
                    raise LookupError(f"{conflict.entity_type} {guid} no longer exists locally")
                record.has_conflict = False
                record.conflict_reason = None
                record.is_synced = False
                record.updated_at = utcnow()
                await s.flush()
                await self.queue.enqueue(
                    conflict.entity_type, guid, self.store.to_payload(conflict.entity_type, record), session=s
                )
            elif conflict.conflict_type == ConflictType.TIME_OVERLAP.value:
                # The server keeps the flagged entry for an operator; the device stops tracking it
                if record is not None:
                    record.has_conflict = False
                    record.conflict_reason = None
                    record.is_synced = True
            elif record is not None:
                await self.store.apply_server_record(conflict.entity_type, conflict.server_data, session=s)

            await self.store.delete_conflict(guid, session=s)

        await self._publish()
        if keep == Winner.LOCAL:
            self.schedule_sync()
