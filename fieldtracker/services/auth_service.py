import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from fastapi import HTTPException, status

from fieldtracker.core.error_handling import license_error
from fieldtracker.core.security import (
    create_admin_token,
    create_worker_token,
    verify_admin_password,
    verify_pin,
)
from fieldtracker.models.worker import Worker
from fieldtracker.schemas.auth import AdminLoginRequest, TokenResponse, WorkerLoginRequest, WorkerSummary
from fieldtracker.services.license_service import validate_current_license

logger = logging.getLogger(__name__)


async def worker_login(db: AsyncSession, request: WorkerLoginRequest) -> TokenResponse:
    """
    Authenticate a worker by employee ID and PIN.

    The license is checked before credentials so an expired or overused
    license blocks every login with the same explicit reason.
    """
    _, license_status = await validate_current_license(db)
    if not license_status.is_valid:
        logger.warning(f"Worker login blocked by license: {license_status.errors}")
        raise license_error(license_status.errors)

    result = await db.execute(
        select(Worker).where(
            Worker.employee_id == request.employee_id,
            Worker.is_active == True,
        )
    )
    worker = result.scalar_one_or_none()

    if not worker or not verify_pin(request.pin, worker.pin_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid employee ID or PIN",
        )

    logger.info(f"Worker {worker.employee_id} logged in on device {request.device_id}")
    return TokenResponse(
        access_token=create_worker_token(worker.id, request.device_id),
        role="worker",
        worker=WorkerSummary.model_validate(worker),
        license_warnings=license_status.warnings,
    )


async def admin_login(request: AdminLoginRequest) -> TokenResponse:
    if not verify_admin_password(request.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid password",
        )
    return TokenResponse(access_token=create_admin_token(), role="admin")
