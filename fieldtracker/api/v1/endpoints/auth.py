from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fieldtracker.core.database import get_db
from fieldtracker.core.dependencies import Principal, get_current_principal, require_active_license
from fieldtracker.core.error_handling import handle_endpoint_errors
from fieldtracker.core.security import create_admin_token, create_worker_token
from fieldtracker.schemas.auth import (
    AdminLoginRequest,
    PrincipalResponse,
    TokenResponse,
    WorkerLoginRequest,
    WorkerSummary,
)
from fieldtracker.services.auth_service import admin_login, worker_login

router = APIRouter()


@router.post("/worker/login", response_model=TokenResponse)
@handle_endpoint_errors(operation_name="worker_login")
async def worker_login_endpoint(
    login_data: WorkerLoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Login with employee ID and PIN; requires a valid license."""
    return await worker_login(db, login_data)


@router.post("/admin/login", response_model=TokenResponse)
@handle_endpoint_errors(operation_name="admin_login")
async def admin_login_endpoint(login_data: AdminLoginRequest):
    """Login as the administrator."""
    return await admin_login(login_data)


@router.get("/me", response_model=PrincipalResponse)
async def me_endpoint(principal: Principal = Depends(get_current_principal)):
    return PrincipalResponse(
        role=principal.role,
        worker=WorkerSummary.model_validate(principal.worker) if principal.worker else None,
        device_id=principal.device_id,
    )


@router.post("/refresh", response_model=TokenResponse)
@handle_endpoint_errors(operation_name="refresh_token")
async def refresh_token_endpoint(principal: Principal = Depends(require_active_license)):
    """Issue a fresh token for the current principal."""
    if principal.is_admin:
        return TokenResponse(access_token=create_admin_token(), role="admin")
    return TokenResponse(
        access_token=create_worker_token(principal.worker.id, principal.device_id),
        role="worker",
        worker=WorkerSummary.model_validate(principal.worker),
    )
