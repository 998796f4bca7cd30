from pydantic import Field
from typing import Any, Optional
from uuid import UUID

from fieldtracker.models.sync_conflict import ConflictAction
from fieldtracker.schemas.sync import SyncModel, UtcDatetime
from fieldtracker.sync.conflicts import ConflictSeverity, ConflictType


class SyncConflictResponse(SyncModel):
    id: int
    entity_type: str
    entity_guid: UUID
    conflict_type: ConflictType
    severity: ConflictSeverity
    device_id: Optional[str] = None
    client_data: dict[str, Any]
    server_data: dict[str, Any]
    resolved: bool
    resolution: Optional[ConflictAction] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[UtcDatetime] = None
    created_at: UtcDatetime


class SyncConflictListResponse(SyncModel):
    conflicts: list[SyncConflictResponse] = Field(default_factory=list)
    total: int = 0


class ResolveConflictRequest(SyncModel):
    action: ConflictAction
