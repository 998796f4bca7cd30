"""
Offline Record Store: durable device-side storage.

Backed by SQLite through SQLAlchemy's async engine. Every public method
takes an optional ``session``; pass one from ``transaction()`` to group
several writes (a record and its queue item, say) into one commit.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional
import asyncio
import logging

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fieldtracker.client.records import (
    CachedBreakType,
    CachedJob,
    CachedSetting,
    CachedWorker,
    LocalBase,
    LocalBreakEntry,
    LocalConflict,
    LocalPhoto,
    LocalTimeEntry,
    SyncState,
)
from fieldtracker.schemas.sync import BreakEntryPayload, PhotoPayload, SyncPullResponse, TimeEntryPayload
from fieldtracker.sync.timeutils import utcnow

logger = logging.getLogger(__name__)

TIME_ENTRY = "time_entry"
BREAK_ENTRY = "break_entry"
PHOTO = "photo"

ENTITY_MODELS = {
    TIME_ENTRY: LocalTimeEntry,
    BREAK_ENTRY: LocalBreakEntry,
    PHOTO: LocalPhoto,
}

PAYLOAD_MODELS = {
    TIME_ENTRY: TimeEntryPayload,
    BREAK_ENTRY: BreakEntryPayload,
    PHOTO: PhotoPayload,
}

# Fields a server copy may overwrite; local bookkeeping columns are never touched
SERVER_FIELDS = {
    TIME_ENTRY: (
        "worker_id", "job_id", "start_time", "end_time",
        "start_latitude", "start_longitude", "end_latitude", "end_longitude",
        "notes", "regular_hours", "overtime_hours", "updated_at",
    ),
    BREAK_ENTRY: (
        "time_entry_offline_guid", "break_type_id", "start_time", "end_time",
        "duration_minutes", "notes", "updated_at",
    ),
    PHOTO: (
        "time_entry_offline_guid", "file_name", "mime_type", "file_size",
        "compressed_size", "width", "height", "captured_at", "latitude", "longitude",
    ),
}


def _model_for(entity_type: str):
    try:
        return ENTITY_MODELS[entity_type]
    except KeyError:
        raise ValueError(f"Unknown entity type: {entity_type}")


class OfflineStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        if db_path == ":memory:":
            # One shared connection, otherwise every session sees an empty database
            self.engine = create_async_engine(
                "sqlite+aiosqlite://",
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        self._write_lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task] = None

    async def open(self):
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        async with self.engine.begin() as conn:
            await conn.run_sync(LocalBase.metadata.create_all)
        logger.debug(f"Offline store ready at {self.db_path}")

    async def close(self):
        await self.engine.dispose()

    @asynccontextmanager
    async def transaction(self):
        """A session whose writes commit together, or not at all."""
        task = asyncio.current_task()
        if task is not None and task is self._owner:
            # The lock is not reentrant; waiting here would hang forever
            raise RuntimeError("Nested store transaction; pass the open session instead")
        async with self._write_lock:
            self._owner = task
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        yield session
            finally:
                self._owner = None

    @asynccontextmanager
    async def session_scope(self, session: Optional[AsyncSession]):
        if session is not None:
            yield session
        else:
            async with self.transaction() as own:
                yield own

    # Domain records

    async def create(self, entity_type: str, values: dict, session: Optional[AsyncSession] = None):
        model = _model_for(entity_type)
        now = utcnow()
        values = {"created_at": now, "updated_at": now, **values}
        async with self.session_scope(session) as s:
            record = model(**values)
            s.add(record)
            await s.flush()
            return record

    async def get(self, entity_type: str, guid: str, session: Optional[AsyncSession] = None):
        async with self.session_scope(session) as s:
            return await s.get(_model_for(entity_type), str(guid))

    async def update(self, entity_type: str, guid: str, values: dict, session: Optional[AsyncSession] = None):
        async with self.session_scope(session) as s:
            record = await s.get(_model_for(entity_type), str(guid))
            if record is None:
                raise LookupError(f"{entity_type} {guid} not found")
            for key, value in values.items():
                setattr(record, key, value)
            await s.flush()
            return record

    async def list(self, entity_type: str, session: Optional[AsyncSession] = None, **filters) -> list:
        model = _model_for(entity_type)
        query = select(model)
        for key, value in filters.items():
            query = query.where(getattr(model, key) == value)
        query = query.order_by(model.created_at)
        async with self.session_scope(session) as s:
            return list((await s.execute(query)).scalars().all())

    async def get_active_time_entry(self, worker_id: int, session: Optional[AsyncSession] = None):
        async with self.session_scope(session) as s:
            result = await s.execute(
                select(LocalTimeEntry)
                .where(LocalTimeEntry.worker_id == worker_id, LocalTimeEntry.end_time.is_(None))
                .order_by(LocalTimeEntry.start_time.desc())
            )
            return result.scalars().first()

    async def get_active_break(self, time_entry_guid: str, session: Optional[AsyncSession] = None):
        async with self.session_scope(session) as s:
            result = await s.execute(
                select(LocalBreakEntry)
                .where(
                    LocalBreakEntry.time_entry_offline_guid == str(time_entry_guid),
                    LocalBreakEntry.end_time.is_(None),
                )
                .order_by(LocalBreakEntry.start_time.desc())
            )
            return result.scalars().first()

    def to_payload(self, entity_type: str, record) -> dict:
        """Wire form of a local record, as sent in a push."""
        return PAYLOAD_MODELS[entity_type].model_validate(record).to_wire()

    async def mark_synced(self, entity_type: str, guid: str, session: Optional[AsyncSession] = None):
        await self.update(entity_type, guid, {"is_synced": True}, session=session)

    async def set_conflict(self, entity_type: str, guid: str, reason: str, session: Optional[AsyncSession] = None):
        await self.update(
            entity_type, guid,
            {"has_conflict": True, "conflict_reason": reason, "is_synced": False},
            session=session,
        )

    async def apply_server_record(self, entity_type: str, data: dict, session: Optional[AsyncSession] = None):
        """Overwrite a local record with the server's copy and mark it synced."""
        payload = PAYLOAD_MODELS[entity_type].model_validate(data)
        values = {field: getattr(payload, field) for field in SERVER_FIELDS[entity_type]}
        if values.get("time_entry_offline_guid") is not None:
            values["time_entry_offline_guid"] = str(values["time_entry_offline_guid"])
        if "updated_at" in values and values["updated_at"] is None:
            del values["updated_at"]
        values.update({"is_synced": True, "has_conflict": False, "conflict_reason": None})
        return await self.update(entity_type, str(payload.offline_guid), values, session=session)

    async def unsynced_records(self, session: Optional[AsyncSession] = None) -> list[tuple[str, Any]]:
        """Records still waiting to reach the server that are not parked as conflicts."""
        records = []
        async with self.session_scope(session) as s:
            for entity_type, model in ENTITY_MODELS.items():
                result = await s.execute(
                    select(model)
                    .where(model.is_synced == False, model.has_conflict == False)
                    .order_by(model.created_at)
                )
                records.extend((entity_type, r) for r in result.scalars().all())
        return records

    # Reference data

    async def replace_reference_data(self, pull: SyncPullResponse, session: Optional[AsyncSession] = None):
        """Overwrite cached reference data with the server's copies."""
        async with self.session_scope(session) as s:
            for worker in pull.workers:
                await s.merge(CachedWorker(
                    id=worker.id,
                    employee_id=worker.employee_id,
                    name=worker.name,
                    is_active=worker.is_active,
                    updated_at=worker.updated_at,
                ))
            for job in pull.jobs:
                await s.merge(CachedJob(
                    id=job.id,
                    job_code=job.job_code,
                    name=job.name,
                    description=job.description,
                    tags=job.tags or [],
                    is_active=job.is_active,
                    updated_at=job.updated_at,
                ))
            # Break types always arrive as the full active set
            await s.execute(delete(CachedBreakType))
            for break_type in pull.break_types:
                s.add(CachedBreakType(
                    id=break_type.id,
                    name=break_type.name,
                    is_paid=break_type.is_paid,
                    default_minutes=break_type.default_minutes,
                    is_active=break_type.is_active,
                ))
            for key, value in pull.system_settings.items():
                await s.merge(CachedSetting(key=key, value=value))
            await s.flush()

    async def list_jobs(self, active_only: bool = True) -> list[CachedJob]:
        query = select(CachedJob).order_by(CachedJob.job_code)
        if active_only:
            query = query.where(CachedJob.is_active == True)
        async with self.session_scope(None) as s:
            return list((await s.execute(query)).scalars().all())

    async def list_break_types(self) -> list[CachedBreakType]:
        async with self.session_scope(None) as s:
            return list((await s.execute(select(CachedBreakType).order_by(CachedBreakType.id))).scalars().all())

    async def get_setting(self, key: str, default: Any = None) -> Any:
        async with self.session_scope(None) as s:
            setting = await s.get(CachedSetting, key)
            return setting.value if setting is not None and setting.value is not None else default

    # Local conflict list

    async def add_conflict(self, values: dict, session: Optional[AsyncSession] = None) -> LocalConflict:
        async with self.session_scope(session) as s:
            result = await s.execute(
                select(LocalConflict).where(LocalConflict.entity_guid == values["entity_guid"])
            )
            conflict = result.scalar_one_or_none()
            if conflict is None:
                conflict = LocalConflict(created_at=utcnow())
                s.add(conflict)
            for key, value in values.items():
                setattr(conflict, key, value)
            await s.flush()
            return conflict

    async def list_conflicts(self, session: Optional[AsyncSession] = None) -> list[LocalConflict]:
        async with self.session_scope(session) as s:
            result = await s.execute(select(LocalConflict).order_by(LocalConflict.created_at, LocalConflict.id))
            return list(result.scalars().all())

    async def get_conflict(self, guid: str, session: Optional[AsyncSession] = None) -> Optional[LocalConflict]:
        async with self.session_scope(session) as s:
            result = await s.execute(select(LocalConflict).where(LocalConflict.entity_guid == str(guid)))
            return result.scalar_one_or_none()

    async def delete_conflict(self, guid: str, session: Optional[AsyncSession] = None):
        async with self.session_scope(session) as s:
            await s.execute(delete(LocalConflict).where(LocalConflict.entity_guid == str(guid)))

    async def count_conflicts(self) -> int:
        async with self.session_scope(None) as s:
            return (await s.execute(select(func.count(LocalConflict.id)))).scalar_one()

    # Key/value sync state

    async def get_state(self, key: str, session: Optional[AsyncSession] = None) -> Optional[str]:
        async with self.session_scope(session) as s:
            state = await s.get(SyncState, key)
            return state.value if state is not None else None

    async def set_state(self, key: str, value: Optional[str], session: Optional[AsyncSession] = None):
        async with self.session_scope(session) as s:
            await s.merge(SyncState(key=key, value=value))
            await s.flush()
