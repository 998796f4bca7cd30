from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from fieldtracker.core.database import get_db
from fieldtracker.core.error_handling import license_error
from fieldtracker.core.security import decode_token
from fieldtracker.models.worker import Worker

security = HTTPBearer()


@dataclass
class Principal:
    """Who a request is acting as: the administrator or one worker on one device."""
    role: str
    worker: Optional[Worker] = None
    device_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def name(self) -> str:
        if self.worker is not None:
            return self.worker.employee_id
        return self.role


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Get the authenticated principal from the JWT token."""
    token = credentials.credentials

    # Validate token format before decoding
    if not token or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials: token is empty",
        )

    payload = decode_token(token)

    if payload is None or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    role = payload.get("role")
    if role == "admin":
        return Principal(role="admin")

    if role != "worker" or payload.get("worker_id") is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    result = await db.execute(select(Worker).where(Worker.id == payload["worker_id"]))
    worker = result.scalar_one_or_none()

    if worker is None or not worker.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Worker not found or inactive",
        )

    return Principal(role="worker", worker=worker, device_id=payload.get("device_id"))


async def require_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """Require the administrator role."""
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return principal


async def require_active_license(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Re-check the installed license on every authenticated request."""
    from fieldtracker.services.license_service import validate_current_license

    _, license_status = await validate_current_license(db)
    if not license_status.is_valid:
        raise license_error(license_status.errors)
    return principal


async def require_licensed_admin(
    principal: Principal = Depends(require_active_license),
) -> Principal:
    return await require_admin(principal)
