from fastapi import APIRouter, Depends, status as http_status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
import logging
import time

from fieldtracker.core.config import settings
from fieldtracker.core.database import get_db
from fieldtracker.services.license_service import validate_current_license
from fieldtracker.sync.timeutils import to_iso, utcnow

router = APIRouter()
logger = logging.getLogger(__name__)

SERVER_START_TIME = time.time()
SERVICE_NAME = "Field Tracker API"


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check with database connectivity, license state and uptime.

    An invalid license is reported but does not make the service
    unhealthy; workers just cannot log in or sync until it is replaced.

    Returns:
        - 200 OK: Service is healthy
        - 503 Service Unavailable: Database disconnected
    """
    health_status = {
        "status": "healthy",
        "timestamp": to_iso(utcnow()),
        "service": {
            "name": SERVICE_NAME,
            "version": "0.1.0",
            "uptime_seconds": round(time.time() - SERVER_START_TIME, 2),
        },
        "environment": settings.ENVIRONMENT,
        "database": {"status": "connected"},
    }

    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database connection error in health check: {str(e)}", exc_info=True)
        health_status["status"] = "unhealthy"
        health_status["database"] = {"status": "disconnected", "error": str(e)}
        return JSONResponse(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, content=health_status)

    license_row, license_status = await validate_current_license(db)
    health_status["license"] = {
        "installed": license_row is not None,
        "valid": license_status.is_valid,
        "seats_used": license_status.seats_used,
        "seats_max": license_status.seats_max,
    }
    return JSONResponse(status_code=http_status.HTTP_200_OK, content=health_status)


@router.get("/health/live")
async def liveness_check():
    """
    Liveness check. Does not touch the database; devices poll this to
    decide whether the server is reachable.
    """
    return JSONResponse(
        status_code=http_status.HTTP_200_OK,
        content={"status": "alive", "service": SERVICE_NAME},
    )
