from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fieldtracker.core.database import get_db
from fieldtracker.core.dependencies import Principal, require_active_license
from fieldtracker.core.error_handling import handle_endpoint_errors
from fieldtracker.schemas.sync import SyncPullResponse, SyncPushRequest, SyncPushResponse, SyncStatusResponse
from fieldtracker.services.sync_service import get_sync_status, pull_changes, push_changes

router = APIRouter()


def _require_worker(principal: Principal):
    if principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Worker authentication required",
        )


@router.post("/push", response_model=SyncPushResponse)
@handle_endpoint_errors(operation_name="sync_push")
async def sync_push_endpoint(
    request: SyncPushRequest,
    principal: Principal = Depends(require_active_license),
    db: AsyncSession = Depends(get_db),
):
    """Apply queued device changes. Every item is acknowledged individually."""
    _require_worker(principal)
    return await push_changes(db, request, principal.worker.id)


@router.get("/pull", response_model=SyncPullResponse)
@handle_endpoint_errors(operation_name="sync_pull")
async def sync_pull_endpoint(
    since: Optional[datetime] = Query(None),
    device_id: Optional[str] = Query(None, alias="deviceId"),
    principal: Principal = Depends(require_active_license),
    db: AsyncSession = Depends(get_db),
):
    """Reference data (workers, jobs, break types, settings) changed since ``since``."""
    _require_worker(principal)
    return await pull_changes(db, device_id or principal.device_id or "unknown", since)


@router.get("/status", response_model=SyncStatusResponse)
@handle_endpoint_errors(operation_name="sync_status")
async def sync_status_endpoint(
    device_id: Optional[str] = Query(None, alias="deviceId"),
    principal: Principal = Depends(require_active_license),
    db: AsyncSession = Depends(get_db),
):
    return await get_sync_status(db, device_id)
