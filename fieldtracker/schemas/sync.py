from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Annotated, Any, Optional
from datetime import datetime
from uuid import UUID

from fieldtracker.sync.conflicts import ConflictSeverity, ConflictStrategy, ConflictType, Winner
from fieldtracker.sync.timeutils import ensure_utc

UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class SyncModel(BaseModel):
    """Wire models use camelCase on the network and snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# Entity payloads (client -> server). Each carries its offline GUID as the idempotency key.

class TimeEntryPayload(SyncModel):
    offline_guid: UUID
    worker_id: int = Field(..., gt=0)
    job_id: int = Field(..., gt=0)
    start_time: UtcDatetime
    end_time: Optional[UtcDatetime] = None
    start_latitude: Optional[float] = Field(None, ge=-90, le=90)
    start_longitude: Optional[float] = Field(None, ge=-180, le=180)
    end_latitude: Optional[float] = Field(None, ge=-90, le=90)
    end_longitude: Optional[float] = Field(None, ge=-180, le=180)
    notes: Optional[str] = Field(None, max_length=1000)
    regular_hours: Optional[float] = Field(None, ge=0)
    overtime_hours: Optional[float] = Field(None, ge=0)
    updated_at: Optional[UtcDatetime] = None


class BreakEntryPayload(SyncModel):
    offline_guid: UUID
    time_entry_offline_guid: UUID
    break_type_id: int = Field(..., gt=0)
    start_time: UtcDatetime
    end_time: Optional[UtcDatetime] = None
    duration_minutes: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)
    updated_at: Optional[UtcDatetime] = None


class PhotoPayload(SyncModel):
    offline_guid: UUID
    time_entry_offline_guid: Optional[UUID] = None
    file_name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field("image/jpeg", max_length=100)
    file_size: int = Field(..., ge=0)
    compressed_size: Optional[int] = Field(None, ge=0)
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)
    captured_at: UtcDatetime
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    base64_data: Optional[str] = None
    updated_at: Optional[UtcDatetime] = None


# Push

class SyncPushRequest(SyncModel):
    # Items stay raw here and are validated one by one, so a single
    # malformed record is reported on its own instead of failing the batch.
    time_entries: list[dict[str, Any]] = Field(default_factory=list)
    break_entries: list[dict[str, Any]] = Field(default_factory=list)
    photos: list[dict[str, Any]] = Field(default_factory=list)
    device_id: str = Field(..., min_length=1, max_length=255)
    last_sync_at: Optional[UtcDatetime] = None
    conflict_strategy: Optional[ConflictStrategy] = None


class SyncItemError(SyncModel):
    entity_guid: str
    entity_type: str
    error: str
    retryable: bool = False


class SyncConflictReport(SyncModel):
    type: ConflictType
    entity_type: str
    entity_guid: str
    client_data: dict[str, Any]
    server_data: dict[str, Any]
    resolution: Winner
    needs_review: bool
    severity: ConflictSeverity
    conflict_id: Optional[int] = None
    conflict_with: list[str] = Field(default_factory=list)


class SyncPushResponse(SyncModel):
    conflicts: list[SyncConflictReport] = Field(default_factory=list)
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[SyncItemError] = Field(default_factory=list)


# Pull

class WorkerReference(SyncModel):
    id: int
    employee_id: str
    name: str
    is_active: bool
    updated_at: Optional[UtcDatetime] = None


class JobReference(SyncModel):
    id: int
    job_code: str
    name: str
    description: Optional[str] = None
    tags: Optional[list[str]] = Field(default_factory=list)
    is_active: bool
    updated_at: Optional[UtcDatetime] = None


class BreakTypeReference(SyncModel):
    id: int
    name: str
    is_paid: bool
    default_minutes: int
    is_active: bool


class SyncPullResponse(SyncModel):
    workers: list[WorkerReference] = Field(default_factory=list)
    jobs: list[JobReference] = Field(default_factory=list)
    break_types: list[BreakTypeReference] = Field(default_factory=list)
    system_settings: dict[str, Any] = Field(default_factory=dict)
    last_server_update: UtcDatetime


# Status

class SyncLogResponse(SyncModel):
    id: int
    device_id: str
    sync_type: str
    status: str
    records_processed: int
    records_succeeded: int
    records_failed: int
    started_at: UtcDatetime
    completed_at: Optional[UtcDatetime] = None


class SyncStatusResponse(SyncModel):
    last_sync: Optional[UtcDatetime] = None
    server_time: UtcDatetime
    recent_syncs: list[SyncLogResponse] = Field(default_factory=list)
