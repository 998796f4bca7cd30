"""
Worker actions on the device: start/end a job, take breaks, attach photos.

Each action writes the record and its queue item in one local transaction,
record first, so the server eventually sees every change made offline.
"""
from pathlib import PurePosixPath
from typing import Callable, Optional
from uuid import uuid4
import logging

from fieldtracker.client.config import ClientSettings
from fieldtracker.client.exceptions import TrackingError
from fieldtracker.client.providers import LocationFix, LocationProvider, NoLocationProvider, PhotoCaptureProvider
from fieldtracker.client.queue import MutationQueue
from fieldtracker.client.records import LocalBreakEntry, LocalPhoto, LocalTimeEntry
from fieldtracker.client.store import BREAK_ENTRY, PHOTO, TIME_ENTRY, OfflineStore
from fieldtracker.sync.timeutils import calculate_hours, duration_minutes, ensure_utc, utcnow

logger = logging.getLogger(__name__)

OVERTIME_SETTING = "overtime_threshold_hours"


class TimeTrackingService:
    def __init__(
        self,
        store: OfflineStore,
        queue: MutationQueue,
        settings: ClientSettings,
        location: Optional[LocationProvider] = None,
        camera: Optional[PhotoCaptureProvider] = None,
        on_change: Optional[Callable[[], object]] = None,
    ):
        self.store = store
        self.queue = queue
        self.settings = settings
        self.location = location or NoLocationProvider()
        self.camera = camera
        self.on_change = on_change

    def _changed(self):
        if self.on_change is not None:
            self.on_change()

    async def _current_fix(self) -> Optional[LocationFix]:
        try:
            return await self.location.get_current_fix(high_accuracy=True)
        except Exception as e:
            # A missing fix never blocks clocking in or out
            logger.warning(f"Location unavailable: {e}")
            return None

    async def _overtime_threshold(self) -> float:
        value = await self.store.get_setting(OVERTIME_SETTING)
        try:
            return float(value) if value is not None else self.settings.OVERTIME_THRESHOLD_HOURS
        except (TypeError, ValueError):
            return self.settings.OVERTIME_THRESHOLD_HOURS

    async def start_job(self, worker_id: int, job_id: int, notes: Optional[str] = None) -> LocalTimeEntry:
        fix = await self._current_fix()
        now = utcnow()
        async with self.store.transaction() as s:
            if await self.store.get_active_time_entry(worker_id, session=s) is not None:
                raise TrackingError("Worker already has an active job")
            entry = await self.store.create(TIME_ENTRY, {
                "offline_guid": str(uuid4()),
                "worker_id": worker_id,
                "job_id": job_id,
                "start_time": now,
                "start_latitude": fix.latitude if fix else None,
                "start_longitude": fix.longitude if fix else None,
                "notes": notes,
                "is_synced": False,
                "created_at": now,
                "updated_at": now,
            }, session=s)
            await self.queue.enqueue(TIME_ENTRY, entry.offline_guid, self.store.to_payload(TIME_ENTRY, entry), session=s)
        logger.info(f"Worker {worker_id} started job {job_id} ({entry.offline_guid})")
        self._changed()
        return entry

    async def end_job(self, worker_id: int, notes: Optional[str] = None) -> LocalTimeEntry:
        """End the active job, ending an open break first."""
        fix = await self._current_fix()
        threshold = await self._overtime_threshold()
        now = utcnow()
        async with self.store.transaction() as s:
            entry = await self.store.get_active_time_entry(worker_id, session=s)
            if entry is None:
                raise TrackingError("Worker has no active job")

            active_break = await self.store.get_active_break(entry.offline_guid, session=s)
            if active_break is not None:
                self._close_break(active_break, now)
                await s.flush()
                await self.queue.enqueue(
                    BREAK_ENTRY, active_break.offline_guid,
                    self.store.to_payload(BREAK_ENTRY, active_break), session=s,
                )

            entry.end_time = now
            entry.end_latitude = fix.latitude if fix else None
            entry.end_longitude = fix.longitude if fix else None
            if notes is not None:
                entry.notes = notes
            entry.regular_hours, entry.overtime_hours = calculate_hours(entry.start_time, now, threshold)
            entry.is_synced = False
            entry.updated_at = now
            await s.flush()
            await self.queue.enqueue(TIME_ENTRY, entry.offline_guid, self.store.to_payload(TIME_ENTRY, entry), session=s)
        logger.info(f"Worker {worker_id} ended job ({entry.offline_guid}): {entry.regular_hours}h + {entry.overtime_hours}h OT")
        self._changed()
        return entry

    @staticmethod
    def _close_break(break_entry: LocalBreakEntry, now):
        break_entry.end_time = now
        break_entry.duration_minutes = duration_minutes(ensure_utc(break_entry.start_time), now)
        break_entry.is_synced = False
        break_entry.updated_at = now

    async def start_break(self, worker_id: int, break_type_id: int, notes: Optional[str] = None) -> LocalBreakEntry:
        now = utcnow()
        async with self.store.transaction() as s:
            entry = await self.store.get_active_time_entry(worker_id, session=s)
            if entry is None:
                raise TrackingError("Breaks can only be taken during an active job")
            if await self.store.get_active_break(entry.offline_guid, session=s) is not None:
                raise TrackingError("Worker is already on a break")
            break_entry = await self.store.create(BREAK_ENTRY, {
                "offline_guid": str(uuid4()),
                "time_entry_offline_guid": entry.offline_guid,
                "break_type_id": break_type_id,
                "start_time": now,
                "notes": notes,
                "is_synced": False,
                "created_at": now,
                "updated_at": now,
            }, session=s)
            await self.queue.enqueue(
                BREAK_ENTRY, break_entry.offline_guid, self.store.to_payload(BREAK_ENTRY, break_entry), session=s
            )
        self._changed()
        return break_entry

    async def end_break(self, worker_id: int) -> LocalBreakEntry:
        now = utcnow()
        async with self.store.transaction() as s:
            entry = await self.store.get_active_time_entry(worker_id, session=s)
            if entry is None:
                raise TrackingError("Worker has no active job")
            break_entry = await self.store.get_active_break(entry.offline_guid, session=s)
            if break_entry is None:
                raise TrackingError("Worker is not on a break")
            self._close_break(break_entry, now)
            await s.flush()
            await self.queue.enqueue(
                BREAK_ENTRY, break_entry.offline_guid, self.store.to_payload(BREAK_ENTRY, break_entry), session=s
            )
        self._changed()
        return break_entry

    async def attach_photo(self, time_entry_guid: Optional[str] = None) -> Optional[LocalPhoto]:
        """Capture a photo, optionally linked to a time entry. None if capture was cancelled."""
        if self.camera is None:
            raise TrackingError("No camera available")
        captured = await self.camera.capture()
        if captured is None:
            return None
        fix = captured.exif_gps or await self._current_fix()
        now = utcnow()

        async with self.store.transaction() as s:
            if time_entry_guid is not None and await self.store.get(TIME_ENTRY, time_entry_guid, session=s) is None:
                raise TrackingError(f"Time entry {time_entry_guid} not found")
            photo = await self.store.create(PHOTO, {
                "offline_guid": str(uuid4()),
                "time_entry_offline_guid": str(time_entry_guid) if time_entry_guid else None,
                "file_name": PurePosixPath(captured.uri).name or "photo.jpg",
                "file_uri": captured.uri,
                "mime_type": captured.mime_type,
                "file_size": captured.file_size_bytes,
                "compressed_size": captured.compressed_size_bytes,
                "width": captured.width,
                "height": captured.height,
                "captured_at": now,
                "latitude": fix.latitude if fix else None,
                "longitude": fix.longitude if fix else None,
                "is_synced": False,
                "created_at": now,
                "updated_at": now,
            }, session=s)
            await self.queue.enqueue(PHOTO, photo.offline_guid, self.store.to_payload(PHOTO, photo), session=s)
        self._changed()
        return photo
