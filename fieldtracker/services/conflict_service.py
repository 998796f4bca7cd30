from typing import Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from fastapi import HTTPException, status

from fieldtracker.core.config import settings
from fieldtracker.models.break_entry import BreakEntry
from fieldtracker.models.sync_conflict import ConflictAction, SyncConflict
from fieldtracker.models.time_entry import TimeEntry
from fieldtracker.schemas.sync import BreakEntryPayload, TimeEntryPayload
from fieldtracker.sync.conflicts import ConflictSeverity, ConflictType
from fieldtracker.sync.timeutils import calculate_hours, duration_minutes, utcnow

logger = logging.getLogger(__name__)


async def list_conflicts(
    db: AsyncSession,
    resolved: Optional[bool] = None,
    severity: Optional[ConflictSeverity] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> tuple[list[SyncConflict], int]:
    """List conflicts newest first, with the total before pagination."""
    query = select(SyncConflict)
    if resolved is not None:
        query = query.where(SyncConflict.resolved == resolved)
    if severity is not None:
        query = query.where(SyncConflict.severity == severity)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(
        query.order_by(SyncConflict.created_at.desc(), SyncConflict.id.desc())
        .offset(skip)
        .limit(limit or settings.MAX_SYNC_CONFLICTS)
    )
    return list(result.scalars().all()), total


async def _keep_client_time_entry(db: AsyncSession, conflict: SyncConflict):
    payload = TimeEntryPayload.model_validate(conflict.client_data)
    result = await db.execute(select(TimeEntry).where(TimeEntry.offline_guid == payload.offline_guid))
    entry = result.scalar_one_or_none()
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Time entry for this conflict no longer exists",
        )
    # An overlap was stored with the client's data already; only the flag changes
    if conflict.conflict_type == ConflictType.UPDATE_CONFLICT:
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
        entry.updated_at = utcnow()
    entry.has_conflict = False
    entry.conflict_reason = None


async def _keep_client_break_entry(db: AsyncSession, conflict: SyncConflict):
    payload = BreakEntryPayload.model_validate(conflict.client_data)
    result = await db.execute(select(BreakEntry).where(BreakEntry.offline_guid == payload.offline_guid))
    entry = result.scalar_one_or_none()
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Break entry for this conflict no longer exists",
        )
    entry.break_type_id = payload.break_type_id
    entry.start_time = payload.start_time
    entry.end_time = payload.end_time
    if payload.end_time is not None:
        entry.duration_minutes = duration_minutes(payload.start_time, payload.end_time)
    entry.notes = payload.notes
    entry.updated_at = utcnow()
    entry.has_conflict = False
    entry.conflict_reason = None


async def _clear_flag(db: AsyncSession, conflict: SyncConflict):
    model = TimeEntry if conflict.entity_type == "time_entry" else BreakEntry
    result = await db.execute(select(model).where(model.offline_guid == conflict.entity_guid))
    entry = result.scalar_one_or_none()
    if entry is not None:
        entry.has_conflict = False
        entry.conflict_reason = None


async def resolve_conflict(
    db: AsyncSession,
    conflict_id: int,
    action: ConflictAction,
    resolved_by: str,
) -> SyncConflict:
    """Apply an operator's decision to a conflict waiting for review."""
    conflict = await db.get(SyncConflict, conflict_id)
    if conflict is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Conflict {conflict_id} not found",
        )
    if conflict.resolved:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Conflict is already resolved",
        )

    try:
        if action == ConflictAction.KEEP_CLIENT:
            if conflict.entity_type == "time_entry":
                await _keep_client_time_entry(db, conflict)
            elif conflict.entity_type == "break_entry":
                await _keep_client_break_entry(db, conflict)
        elif conflict.conflict_type == ConflictType.TIME_OVERLAP:
            # Keeping the server side of a double-booking drops the newcomer
            await db.execute(delete(BreakEntry).where(BreakEntry.time_entry_offline_guid == conflict.entity_guid))
            await db.execute(delete(TimeEntry).where(TimeEntry.offline_guid == conflict.entity_guid))
        else:
            await _clear_flag(db, conflict)

        conflict.resolved = True
        conflict.resolution = action
        conflict.resolved_by = resolved_by
        conflict.resolved_at = utcnow()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(conflict)
    logger.info(f"Conflict {conflict_id} resolved as {action.value} by {resolved_by}")
    return conflict
