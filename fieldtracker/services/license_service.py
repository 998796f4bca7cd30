from typing import Optional
from datetime import datetime
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from fastapi import HTTPException, status

from fieldtracker.core.config import settings
from fieldtracker.licensing import (
    LicenseFormatError,
    LicenseStatus,
    check_license_status,
    parse_license_file,
    verify_license,
)
from fieldtracker.models.license import License
from fieldtracker.models.worker import Worker
from fieldtracker.schemas.license import LicenseInfo, LicenseStatusResponse
from fieldtracker.sync.timeutils import utcnow

logger = logging.getLogger(__name__)


async def get_active_license(db: AsyncSession) -> Optional[License]:
    """Return the single active license, if one has been installed."""
    result = await db.execute(
        select(License)
        .where(License.is_active == True)
        .order_by(License.uploaded_at.desc(), License.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def count_seats_used(db: AsyncSession) -> int:
    """A seat is one active worker."""
    result = await db.execute(select(func.count(Worker.id)).where(Worker.is_active == True))
    return result.scalar_one()


async def validate_current_license(
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> tuple[Optional[License], LicenseStatus]:
    """
    Re-verify the active license from its stored document.

    The signature is checked every time rather than trusted from upload,
    so a row edited directly in the database stops validating.
    """
    license_row = await get_active_license(db)
    seats_used = await count_seats_used(db)

    if license_row is None:
        return None, LicenseStatus(
            is_valid=False,
            seats_used=seats_used,
            seats_max=0,
            errors=["No license installed"],
        )

    try:
        signed = parse_license_file(license_row.document)
    except LicenseFormatError as e:
        logger.error(f"Stored license {license_row.license_id} is unreadable: {e}")
        return license_row, LicenseStatus(
            is_valid=False,
            seats_used=seats_used,
            seats_max=0,
            errors=["Invalid license signature"],
        )

    return license_row, check_license_status(signed, settings.LICENSE_PUBLIC_KEY, seats_used, now=now)


async def install_license(
    db: AsyncSession,
    content: bytes,
    uploaded_by: Optional[str] = None,
) -> License:
    """
    Parse, verify and activate a ``.license`` file.

    The previous license is deactivated in the same transaction, so there
    is never a moment with two active licenses or none.
    """
    try:
        signed = parse_license_file(content)
    except LicenseFormatError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    if not verify_license(signed, settings.LICENSE_PUBLIC_KEY):
        logger.warning(f"Rejected license upload {signed.data.license_id}: invalid signature")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid license signature",
        )

    document = content.decode("utf-8") if isinstance(content, bytes) else content

    try:
        await db.execute(
            update(License)
            .where(License.is_active == True)
            .values(is_active=False)
        )
        license_row = License(
            license_id=signed.data.license_id,
            seats_max=signed.data.seats_max,
            expiry_updates=signed.data.expiry_updates,
            issued_at=signed.data.issued_at,
            issuer=signed.data.issuer,
            signature=signed.signature,
            document=document,
            is_active=True,
            uploaded_at=utcnow(),
            uploaded_by=uploaded_by,
        )
        db.add(license_row)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(license_row)
    logger.info(f"Installed license {license_row.license_id} ({license_row.seats_max} seats)")
    return license_row


async def get_license_status(db: AsyncSession) -> LicenseStatusResponse:
    license_row, license_status = await validate_current_license(db)
    return LicenseStatusResponse(
        installed=license_row is not None,
        is_valid=license_status.is_valid,
        seats_used=license_status.seats_used,
        seats_max=license_status.seats_max,
        days_until_expiry=license_status.days_until_expiry,
        warnings=license_status.warnings,
        errors=license_status.errors,
        license=LicenseInfo.model_validate(license_row) if license_row is not None else None,
        checked_at=utcnow(),
    )
