"""
Server side of the offline sync protocol.

Every pushed item is applied in its own transaction and keyed by its
offline GUID, so a retried push is a no-op and one bad item never takes
the rest of the batch down with it.
"""
from typing import Any, Optional
from datetime import datetime
from pathlib import Path
import asyncio
import base64
import binascii
import logging

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, or_
from fastapi import HTTPException, status

from fieldtracker.core.config import settings
from fieldtracker.models.break_entry import BreakEntry
from fieldtracker.models.break_type import BreakType
from fieldtracker.models.job import Job
from fieldtracker.models.photo import Photo
from fieldtracker.models.sync_conflict import ConflictAction, SyncConflict
from fieldtracker.models.sync_log import SyncLog, SyncLogStatus, SyncType
from fieldtracker.models.system_setting import SystemSetting
from fieldtracker.models.time_entry import TimeEntry
from fieldtracker.models.worker import Worker
from fieldtracker.schemas.sync import (
    BreakEntryPayload,
    BreakTypeReference,
    JobReference,
    PhotoPayload,
    SyncConflictReport,
    SyncItemError,
    SyncLogResponse,
    SyncPullResponse,
    SyncPushRequest,
    SyncPushResponse,
    SyncStatusResponse,
    TimeEntryPayload,
    WorkerReference,
)
from fieldtracker.sync.conflicts import (
    ConflictStrategy,
    ConflictType,
    Winner,
    classify_severity,
    resolve,
    strategy_for,
)
from fieldtracker.sync.timeutils import (
    calculate_hours,
    duration_minutes,
    ensure_utc,
    utcnow,
    validate_break_window,
    validate_time_window,
)

logger = logging.getLogger(__name__)

TIME_ENTRY = "time_entry"
BREAK_ENTRY = "break_entry"
PHOTO = "photo"

OVERLAP_REASON = "Overlaps existing time entries"

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


class ItemRejected(Exception):
    """A single pushed item could not be applied."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class _PushContext:
    def __init__(self, device_id: str, strategy: ConflictStrategy, worker_id: int):
        self.device_id = device_id
        self.strategy = strategy
        self.worker_id = worker_id
        self.response = SyncPushResponse()

    def succeed(self):
        self.response.processed += 1
        self.response.succeeded += 1

    def fail(self, entity_type: str, entity_guid: str, message: str, retryable: bool):
        self.response.processed += 1
        self.response.failed += 1
        self.response.errors.append(SyncItemError(
            entity_guid=entity_guid,
            entity_type=entity_type,
            error=message,
            retryable=retryable,
        ))


def _guid_of(raw: Any) -> str:
    if isinstance(raw, dict):
        guid = raw.get("offlineGuid") or raw.get("offline_guid")
        if guid:
            return str(guid)
    return "unknown"


def _validation_message(e: ValidationError) -> str:
    parts = []
    for error in e.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        parts.append(f"{field}: {error['msg']}" if field else error["msg"])
    return "Invalid payload: " + "; ".join(parts)


def _same_instant(a: Optional[datetime], b: Optional[datetime]) -> bool:
    return ensure_utc(a) == ensure_utc(b)


def _time_entry_matches(entry: TimeEntry, payload: TimeEntryPayload) -> bool:
    # Derived hours are recomputed server-side and left out of the comparison
    return (
        entry.worker_id == payload.worker_id
        and entry.job_id == payload.job_id
        and _same_instant(entry.start_time, payload.start_time)
        and _same_instant(entry.end_time, payload.end_time)
        and entry.start_latitude == payload.start_latitude
        and entry.start_longitude == payload.start_longitude
        and entry.end_latitude == payload.end_latitude
        and entry.end_longitude == payload.end_longitude
        and (entry.notes or None) == (payload.notes or None)
    )


def _break_entry_matches(entry: BreakEntry, payload: BreakEntryPayload) -> bool:
    return (
        entry.break_type_id == payload.break_type_id
        and entry.time_entry_offline_guid == payload.time_entry_offline_guid
        and _same_instant(entry.start_time, payload.start_time)
        and _same_instant(entry.end_time, payload.end_time)
        and (entry.notes or None) == (payload.notes or None)
    )


def _apply_time_entry_fields(entry: TimeEntry, payload: TimeEntryPayload, device_id: str):
    entry.worker_id = payload.worker_id
    entry.job_id = payload.job_id
    entry.start_time = payload.start_time
    entry.end_time = payload.end_time
    entry.start_latitude = payload.start_latitude
    entry.start_longitude = payload.start_longitude
    entry.end_latitude = payload.end_latitude
    entry.end_longitude = payload.end_longitude
    entry.notes = payload.notes
    if payload.end_time is not None:
        entry.regular_hours, entry.overtime_hours = calculate_hours(
            payload.start_time, payload.end_time, settings.OVERTIME_THRESHOLD_HOURS
        )
    else:
        entry.regular_hours = None
        entry.overtime_hours = None
    entry.device_id = device_id
    entry.updated_at = payload.updated_at or utcnow()
    entry.is_synced = True


def _apply_break_fields(entry: BreakEntry, payload: BreakEntryPayload):
    entry.break_type_id = payload.break_type_id
    entry.start_time = payload.start_time
    entry.end_time = payload.end_time
    if payload.end_time is not None:
        entry.duration_minutes = duration_minutes(payload.start_time, payload.end_time)
    else:
        entry.duration_minutes = None
    entry.notes = payload.notes
    entry.updated_at = payload.updated_at or utcnow()
    entry.is_synced = True


async def _record_conflict(
    db: AsyncSession,
    ctx: _PushContext,
    conflict_type: ConflictType,
    entity_type: str,
    entity_guid,
    client_data: dict,
    server_data: dict,
) -> SyncConflict:
    conflict = SyncConflict(
        entity_type=entity_type,
        entity_guid=entity_guid,
        conflict_type=conflict_type,
        severity=classify_severity(conflict_type, entity_type),
        device_id=ctx.device_id,
        client_data=client_data,
        server_data=server_data,
        resolved=False,
    )
    db.add(conflict)
    await db.flush()
    return conflict


async def _has_open_conflict(db: AsyncSession, entity_guid, conflict_type: ConflictType) -> bool:
    result = await db.execute(
        select(SyncConflict.id).where(
            SyncConflict.entity_guid == entity_guid,
            SyncConflict.conflict_type == conflict_type,
            SyncConflict.resolved == False,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _reconcile_existing(
    db: AsyncSession,
    ctx: _PushContext,
    entity_type: str,
    existing,
    payload,
    apply_client,
    payload_model,
):
    """
    Settle a pushed record whose GUID the server already has with different content.

    Only outcomes the device has to act on are reported back: the server
    copy winning, or the record going to review. A client win is applied
    silently.
    """
    client_data = payload.to_wire()
    server_data = payload_model.model_validate(existing).to_wire()
    resolution = resolve(client_data, server_data, strategy_for(ConflictType.UPDATE_CONFLICT, ctx.strategy))

    if resolution.needs_review:
        existing.has_conflict = True
        existing.conflict_reason = "Modified on both device and server"
        conflict = await _record_conflict(
            db, ctx, ConflictType.UPDATE_CONFLICT, entity_type, payload.offline_guid, client_data, server_data
        )
        logger.info(f"{entity_type} {payload.offline_guid} needs review (conflict {conflict.id})")
        return SyncConflictReport(
            type=ConflictType.UPDATE_CONFLICT,
            entity_type=entity_type,
            entity_guid=str(payload.offline_guid),
            client_data=client_data,
            server_data=server_data,
            resolution=resolution.winner,
            needs_review=True,
            severity=conflict.severity,
            conflict_id=conflict.id,
        )

    if resolution.winner == Winner.LOCAL:
        apply_client()
        # Only edit races are settled by a device win; overlaps stay with a reviewer
        await db.execute(
            update(SyncConflict)
            .where(
                SyncConflict.entity_guid == payload.offline_guid,
                SyncConflict.conflict_type == ConflictType.UPDATE_CONFLICT,
                SyncConflict.resolved == False,
            )
            .values(
                resolved=True,
                resolution=ConflictAction.KEEP_CLIENT,
                resolved_by=f"device:{ctx.device_id}",
                resolved_at=utcnow(),
            )
        )
        if await _has_open_conflict(db, payload.offline_guid, ConflictType.TIME_OVERLAP):
            existing.has_conflict = True
            existing.conflict_reason = OVERLAP_REASON
        else:
            existing.has_conflict = False
            existing.conflict_reason = None
        return None

    return SyncConflictReport(
        type=ConflictType.UPDATE_CONFLICT,
        entity_type=entity_type,
        entity_guid=str(payload.offline_guid),
        client_data=client_data,
        server_data=server_data,
        resolution=Winner.SERVER,
        needs_review=False,
        severity=classify_severity(ConflictType.UPDATE_CONFLICT, entity_type),
    )


async def _find_overlaps(db: AsyncSession, payload: TimeEntryPayload) -> list[TimeEntry]:
    now = utcnow()
    candidate_end = payload.end_time or now
    result = await db.execute(
        select(TimeEntry).where(
            TimeEntry.worker_id == payload.worker_id,
            TimeEntry.offline_guid != payload.offline_guid,
            TimeEntry.start_time < candidate_end,
            or_(TimeEntry.end_time.is_(None), TimeEntry.end_time > payload.start_time),
        ).order_by(TimeEntry.start_time)
    )
    return list(result.scalars().all())


async def _apply_time_entry(db: AsyncSession, ctx: _PushContext, raw: dict) -> Optional[SyncConflictReport]:
    try:
        payload = TimeEntryPayload.model_validate(raw)
    except ValidationError as e:
        raise ItemRejected(_validation_message(e))

    errors = validate_time_window(payload.start_time, payload.end_time)
    if errors:
        raise ItemRejected("; ".join(errors))

    if payload.worker_id != ctx.worker_id:
        raise ItemRejected("Time entry belongs to another worker")

    result = await db.execute(select(TimeEntry).where(TimeEntry.offline_guid == payload.offline_guid))
    existing = result.scalar_one_or_none()

    if existing is not None:
        if existing.worker_id != ctx.worker_id:
            raise ItemRejected("Time entry belongs to another worker")
        if _time_entry_matches(existing, payload):
            return None
        moved = not (
            _same_instant(existing.start_time, payload.start_time)
            and _same_instant(existing.end_time, payload.end_time)
        )
        report = await _reconcile_existing(
            db, ctx, TIME_ENTRY, existing, payload,
            lambda: _apply_time_entry_fields(existing, payload, ctx.device_id),
            TimeEntryPayload,
        )
        if report is not None or not moved:
            return report
        # The device's new window was applied; it may now collide with other shifts
        if await _has_open_conflict(db, payload.offline_guid, ConflictType.TIME_OVERLAP):
            return None
        overlaps = await _find_overlaps(db, payload)
        if not overlaps:
            return None
        existing.has_conflict = True
        existing.conflict_reason = OVERLAP_REASON
        return await _report_overlap(db, ctx, payload, overlaps)

    if await db.get(Worker, payload.worker_id) is None:
        raise ItemRejected(f"Unknown worker {payload.worker_id}")
    if await db.get(Job, payload.job_id) is None:
        raise ItemRejected(f"Unknown job {payload.job_id}")

    entry = TimeEntry(offline_guid=payload.offline_guid)
    _apply_time_entry_fields(entry, payload, ctx.device_id)

    overlaps = await _find_overlaps(db, payload)
    if overlaps:
        entry.has_conflict = True
        entry.conflict_reason = OVERLAP_REASON
    db.add(entry)
    await db.flush()

    if not overlaps:
        return None
    return await _report_overlap(db, ctx, payload, overlaps)


async def _report_overlap(
    db: AsyncSession,
    ctx: _PushContext,
    payload: TimeEntryPayload,
    overlaps: list[TimeEntry],
) -> SyncConflictReport:
    client_data = payload.to_wire()
    server_data = TimeEntryPayload.model_validate(overlaps[0]).to_wire()
    conflict = await _record_conflict(
        db, ctx, ConflictType.TIME_OVERLAP, TIME_ENTRY, payload.offline_guid, client_data, server_data
    )
    logger.info(f"Time entry {payload.offline_guid} overlaps {len(overlaps)} existing entries")
    return SyncConflictReport(
        type=ConflictType.TIME_OVERLAP,
        entity_type=TIME_ENTRY,
        entity_guid=str(payload.offline_guid),
        client_data=client_data,
        server_data=server_data,
        resolution=Winner.SERVER,
        needs_review=True,
        severity=conflict.severity,
        conflict_id=conflict.id,
        conflict_with=[str(o.offline_guid) for o in overlaps],
    )


async def _apply_break_entry(db: AsyncSession, ctx: _PushContext, raw: dict) -> Optional[SyncConflictReport]:
    try:
        payload = BreakEntryPayload.model_validate(raw)
    except ValidationError as e:
        raise ItemRejected(_validation_message(e))

    result = await db.execute(select(TimeEntry).where(TimeEntry.offline_guid == payload.time_entry_offline_guid))
    parent = result.scalar_one_or_none()
    if parent is None:
        # The parent is usually still queued on the device; try again next cycle
        raise ItemRejected(
            f"Referenced time entry {payload.time_entry_offline_guid} not found",
            retryable=True,
        )
    if parent.worker_id != ctx.worker_id:
        raise ItemRejected("Break belongs to another worker's time entry")

    errors = validate_break_window(payload.start_time, payload.end_time, parent.start_time, parent.end_time)
    if errors:
        raise ItemRejected("; ".join(errors))

    if await db.get(BreakType, payload.break_type_id) is None:
        raise ItemRejected(f"Unknown break type {payload.break_type_id}")

    result = await db.execute(select(BreakEntry).where(BreakEntry.offline_guid == payload.offline_guid))
    existing = result.scalar_one_or_none()

    if existing is not None:
        if _break_entry_matches(existing, payload):
            return None
        return await _reconcile_existing(
            db, ctx, BREAK_ENTRY, existing, payload,
            lambda: _apply_break_fields(existing, payload),
            BreakEntryPayload,
        )

    entry = BreakEntry(
        offline_guid=payload.offline_guid,
        time_entry_id=parent.id,
        time_entry_offline_guid=payload.time_entry_offline_guid,
    )
    _apply_break_fields(entry, payload)
    db.add(entry)
    await db.flush()
    return None


def _write_photo(path: Path, data: bytes):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


async def _apply_photo(db: AsyncSession, ctx: _PushContext, raw: dict) -> Optional[SyncConflictReport]:
    try:
        payload = PhotoPayload.model_validate(raw)
    except ValidationError as e:
        raise ItemRejected(_validation_message(e))

    result = await db.execute(select(Photo).where(Photo.offline_guid == payload.offline_guid))
    if result.scalar_one_or_none() is not None:
        # Photos are immutable once uploaded
        return None

    parent_id = None
    if payload.time_entry_offline_guid is not None:
        result = await db.execute(
            select(TimeEntry.id, TimeEntry.worker_id).where(TimeEntry.offline_guid == payload.time_entry_offline_guid)
        )
        parent = result.one_or_none()
        if parent is None:
            raise ItemRejected(
                f"Referenced time entry {payload.time_entry_offline_guid} not found",
                retryable=True,
            )
        if parent.worker_id != ctx.worker_id:
            raise ItemRejected("Photo belongs to another worker's time entry")
        parent_id = parent.id

    file_path = None
    if payload.base64_data:
        try:
            data = base64.b64decode(payload.base64_data, validate=True)
        except (binascii.Error, ValueError):
            raise ItemRejected("Photo data is not valid base64")
        if len(data) > settings.MAX_PHOTO_BYTES:
            raise ItemRejected(f"Photo exceeds {settings.MAX_PHOTO_BYTES} bytes")
        extension = MIME_EXTENSIONS.get(payload.mime_type, ".bin")
        path = Path(settings.UPLOAD_DIR) / f"{payload.offline_guid}{extension}"
        await asyncio.to_thread(_write_photo, path, data)
        file_path = str(path)

    photo = Photo(
        offline_guid=payload.offline_guid,
        time_entry_id=parent_id,
        file_name=payload.file_name,
        file_path=file_path,
        mime_type=payload.mime_type,
        file_size=payload.file_size,
        compressed_size=payload.compressed_size,
        width=payload.width,
        height=payload.height,
        captured_at=payload.captured_at,
        latitude=payload.latitude,
        longitude=payload.longitude,
        is_synced=True,
        updated_at=payload.updated_at or utcnow(),
    )
    db.add(photo)
    await db.flush()
    return None


async def _apply_items(db: AsyncSession, ctx: _PushContext, entity_type: str, items: list, handler):
    for raw in items:
        guid = _guid_of(raw)
        if not isinstance(raw, dict):
            ctx.fail(entity_type, guid, "Invalid payload: expected an object", retryable=False)
            continue
        try:
            report = await handler(db, ctx, raw)
            await db.commit()
        except ItemRejected as e:
            await db.rollback()
            logger.debug(f"Rejected {entity_type} {guid}: {e.message}")
            ctx.fail(entity_type, guid, e.message, e.retryable)
            continue
        except Exception as e:
            await db.rollback()
            logger.error(f"Failed to apply {entity_type} {guid}", exc_info=True)
            ctx.fail(entity_type, guid, f"Server error: {type(e).__name__}", retryable=True)
            continue

        ctx.succeed()
        if report is not None:
            ctx.response.conflicts.append(report)


async def _start_log(db: AsyncSession, device_id: str, sync_type: SyncType, processed: int = 0) -> int:
    log = SyncLog(
        device_id=device_id,
        sync_type=sync_type,
        records_processed=processed,
        started_at=utcnow(),
        status=SyncLogStatus.RUNNING,
    )
    db.add(log)
    await db.commit()
    return log.id


async def _finish_log(db: AsyncSession, log_id: int, log_status: SyncLogStatus, **values):
    await db.execute(
        update(SyncLog)
        .where(SyncLog.id == log_id)
        .values(completed_at=utcnow(), status=log_status, **values)
    )
    await db.commit()


def _effective_strategy(requested: Optional[ConflictStrategy]) -> ConflictStrategy:
    # A device may ask for stricter handling, never for its own copy to win
    if requested == ConflictStrategy.MANUAL_REVIEW:
        return requested
    if requested is not None:
        logger.debug(f"Ignoring device conflict strategy {requested.value}")
    return ConflictStrategy(settings.SERVER_CONFLICT_STRATEGY)


async def push_changes(db: AsyncSession, request: SyncPushRequest, worker_id: int) -> SyncPushResponse:
    """
    Apply a batch of device changes: time entries first, then breaks, then photos.

    ``worker_id`` is the authenticated worker; records belonging to anyone
    else are rejected item by item.
    """
    total = len(request.time_entries) + len(request.break_entries) + len(request.photos)
    if total > settings.SYNC_BATCH_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Batch of {total} items exceeds the limit of {settings.SYNC_BATCH_SIZE}",
        )

    ctx = _PushContext(request.device_id, _effective_strategy(request.conflict_strategy), worker_id)
    log_id = await _start_log(db, request.device_id, SyncType.PUSH, total)

    try:
        await _apply_items(db, ctx, TIME_ENTRY, request.time_entries, _apply_time_entry)
        await _apply_items(db, ctx, BREAK_ENTRY, request.break_entries, _apply_break_entry)
        await _apply_items(db, ctx, PHOTO, request.photos, _apply_photo)
    except Exception as e:
        await db.rollback()
        await _finish_log(
            db, log_id, SyncLogStatus.FAILED,
            records_succeeded=ctx.response.succeeded,
            records_failed=ctx.response.failed,
            error_details={"error": str(e)},
        )
        raise

    response = ctx.response
    details = None
    if response.errors or response.conflicts:
        details = {
            "errors": [e.to_wire() for e in response.errors],
            "conflicts": [
                {"type": c.type.value, "entityGuid": c.entity_guid, "conflictId": c.conflict_id}
                for c in response.conflicts
            ],
        }
    await _finish_log(
        db, log_id, SyncLogStatus.COMPLETED,
        records_succeeded=response.succeeded,
        records_failed=response.failed,
        error_details=details,
    )

    logger.info(
        f"Push from {request.device_id}: {response.processed} processed, "
        f"{response.succeeded} succeeded, {response.failed} failed, {len(response.conflicts)} conflicts"
    )
    return response


async def pull_changes(db: AsyncSession, device_id: str, since: Optional[datetime] = None) -> SyncPullResponse:
    """Reference data changed since ``since``; everything when it is omitted."""
    since = ensure_utc(since)
    log_id = await _start_log(db, device_id, SyncType.PULL)
    # Captured before reading so nothing updated mid-read is skipped next time
    server_time = utcnow()

    try:
        worker_query = select(Worker).order_by(Worker.id)
        job_query = select(Job).order_by(Job.id)
        if since is not None:
            worker_query = worker_query.where(Worker.updated_at >= since)
            job_query = job_query.where(Job.updated_at >= since)

        workers = (await db.execute(worker_query)).scalars().all()
        jobs = (await db.execute(job_query)).scalars().all()
        break_types = (await db.execute(
            select(BreakType).where(BreakType.is_active == True).order_by(BreakType.id)
        )).scalars().all()
        system_settings = (await db.execute(select(SystemSetting))).scalars().all()

        response = SyncPullResponse(
            workers=[WorkerReference.model_validate(w) for w in workers],
            jobs=[JobReference.model_validate(j) for j in jobs],
            break_types=[BreakTypeReference.model_validate(b) for b in break_types],
            system_settings={s.key: s.value for s in system_settings},
            last_server_update=server_time,
        )
    except Exception as e:
        await db.rollback()
        await _finish_log(db, log_id, SyncLogStatus.FAILED, error_details={"error": str(e)})
        raise

    count = len(response.workers) + len(response.jobs) + len(response.break_types)
    await _finish_log(
        db, log_id, SyncLogStatus.COMPLETED,
        records_processed=count,
        records_succeeded=count,
    )
    return response


async def get_sync_status(db: AsyncSession, device_id: Optional[str] = None, limit: int = 10) -> SyncStatusResponse:
    query = select(SyncLog).order_by(SyncLog.started_at.desc(), SyncLog.id.desc()).limit(limit)
    if device_id:
        query = query.where(SyncLog.device_id == device_id)
    logs = (await db.execute(query)).scalars().all()

    last_sync = None
    for log in logs:
        if log.status == SyncLogStatus.COMPLETED and log.completed_at is not None:
            last_sync = log.completed_at
            break

    return SyncStatusResponse(
        last_sync=last_sync,
        server_time=utcnow(),
        recent_syncs=[
            SyncLogResponse(
                id=log.id,
                device_id=log.device_id,
                sync_type=log.sync_type.value,
                status=log.status.value,
                records_processed=log.records_processed,
                records_succeeded=log.records_succeeded,
                records_failed=log.records_failed,
                started_at=log.started_at,
                completed_at=log.completed_at,
            )
            for log in logs
        ],
    )
