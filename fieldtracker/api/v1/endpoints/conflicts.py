from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fieldtracker.core.database import get_db
from fieldtracker.core.dependencies import Principal, require_licensed_admin
from fieldtracker.core.error_handling import handle_endpoint_errors
from fieldtracker.schemas.conflict import (
    ResolveConflictRequest,
    SyncConflictListResponse,
    SyncConflictResponse,
)
from fieldtracker.services.conflict_service import list_conflicts, resolve_conflict
from fieldtracker.sync.conflicts import ConflictSeverity

router = APIRouter()


@router.get("", response_model=SyncConflictListResponse)
@handle_endpoint_errors(operation_name="list_conflicts")
async def list_conflicts_endpoint(
    resolved: Optional[bool] = Query(None),
    severity: Optional[ConflictSeverity] = Query(None),
    skip: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=500),
    principal: Principal = Depends(require_licensed_admin),
    db: AsyncSession = Depends(get_db),
):
    conflicts, total = await list_conflicts(db, resolved=resolved, severity=severity, skip=skip, limit=limit)
    return SyncConflictListResponse(
        conflicts=[SyncConflictResponse.model_validate(c) for c in conflicts],
        total=total,
    )


@router.post("/{conflict_id}/resolve", response_model=SyncConflictResponse)
@handle_endpoint_errors(operation_name="resolve_conflict")
async def resolve_conflict_endpoint(
    conflict_id: int,
    request: ResolveConflictRequest,
    principal: Principal = Depends(require_licensed_admin),
    db: AsyncSession = Depends(get_db),
):
    """Settle a conflict by keeping either the device's or the server's version."""
    conflict = await resolve_conflict(db, conflict_id, request.action, resolved_by=principal.name)
    return SyncConflictResponse.model_validate(conflict)
