from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from fieldtracker.core.database import get_db
from fieldtracker.core.dependencies import Principal, require_admin
from fieldtracker.core.error_handling import handle_endpoint_errors
from fieldtracker.schemas.license import LicenseStatusResponse
from fieldtracker.services.license_service import get_license_status, install_license

router = APIRouter()


@router.get("/status", response_model=LicenseStatusResponse)
@handle_endpoint_errors(operation_name="license_status")
async def license_status_endpoint(db: AsyncSession = Depends(get_db)):
    """Current license validity; public so devices can explain a blocked login."""
    return await get_license_status(db)


@router.post("", response_model=LicenseStatusResponse)
@handle_endpoint_errors(operation_name="upload_license")
async def upload_license_endpoint(
    file: UploadFile = File(...),
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Install a new ``.license`` file, replacing the active one."""
    content = await file.read()
    await install_license(db, content, uploaded_by=principal.name)
    return await get_license_status(db)
