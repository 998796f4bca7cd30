"""
Local SQLite tables for the offline client.

These live on the device and are separate from the server models: rows
are keyed by offline GUID, carry sync flags, and the mutation queue sits
alongside them so a record and its queue item can share a transaction.
"""
from sqlalchemy import Column, Integer, String, Text, Float, Boolean, DateTime, JSON, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base

LocalBase = declarative_base()


class LocalTimeEntry(LocalBase):
    __tablename__ = "time_entries"

    offline_guid = Column(String(36), primary_key=True)
    worker_id = Column(Integer, nullable=False)
    job_id = Column(Integer, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    start_latitude = Column(Float, nullable=True)
    start_longitude = Column(Float, nullable=True)
    end_latitude = Column(Float, nullable=True)
    end_longitude = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    regular_hours = Column(Float, nullable=True)
    overtime_hours = Column(Float, nullable=True)
    is_synced = Column(Boolean, nullable=False, default=False)
    has_conflict = Column(Boolean, nullable=False, default=False)
    conflict_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_local_time_entries_worker_end", "worker_id", "end_time"),
    )


class LocalBreakEntry(LocalBase):
    __tablename__ = "break_entries"

    offline_guid = Column(String(36), primary_key=True)
    time_entry_offline_guid = Column(String(36), nullable=False, index=True)
    break_type_id = Column(Integer, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    is_synced = Column(Boolean, nullable=False, default=False)
    has_conflict = Column(Boolean, nullable=False, default=False)
    conflict_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class LocalPhoto(LocalBase):
    __tablename__ = "photos"

    offline_guid = Column(String(36), primary_key=True)
    time_entry_offline_guid = Column(String(36), nullable=True, index=True)
    file_name = Column(String(255), nullable=False)
    file_uri = Column(Text, nullable=False)
    mime_type = Column(String(100), nullable=False, default="image/jpeg")
    file_size = Column(Integer, nullable=False)
    compressed_size = Column(Integer, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    captured_at = Column(DateTime(timezone=True), nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    is_synced = Column(Boolean, nullable=False, default=False)
    has_conflict = Column(Boolean, nullable=False, default=False)
    conflict_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


# Reference data pulled from the server; overwritten on every pull

class CachedWorker(LocalBase):
    __tablename__ = "workers"

    id = Column(Integer, primary_key=True)
    employee_id = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class CachedJob(LocalBase):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True)
    job_code = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    tags = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class CachedBreakType(LocalBase):
    __tablename__ = "break_types"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    is_paid = Column(Boolean, nullable=False, default=False)
    default_minutes = Column(Integer, nullable=False, default=15)
    is_active = Column(Boolean, nullable=False, default=True)


class CachedSetting(LocalBase):
    __tablename__ = "system_settings"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)


# Sync bookkeeping

class QueueItem(LocalBase):
    __tablename__ = "sync_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(50), nullable=False)
    entity_guid = Column(String(36), nullable=False)
    payload = Column(JSON, nullable=False)
    retry_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    # Bumped whenever the payload is replaced, so an in-flight send can tell it went stale
    version = Column(Integer, nullable=False, default=1)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_guid", name="uq_sync_queue_entity"),
        Index("idx_sync_queue_created", "created_at", "id"),
    )


class FailedItem(LocalBase):
    __tablename__ = "failed_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(50), nullable=False)
    entity_guid = Column(String(36), nullable=False)
    payload = Column(JSON, nullable=False)
    retry_count = Column(Integer, nullable=False)
    last_error = Column(Text, nullable=True)
    failure_kind = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    failed_at = Column(DateTime(timezone=True), nullable=False)


class LocalConflict(LocalBase):
    __tablename__ = "conflicts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(50), nullable=False)
    entity_guid = Column(String(36), nullable=False, unique=True)
    conflict_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    client_data = Column(JSON, nullable=False)
    server_data = Column(JSON, nullable=False)
    conflict_with = Column(JSON, nullable=True)
    server_conflict_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class SyncState(LocalBase):
    __tablename__ = "sync_state"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
