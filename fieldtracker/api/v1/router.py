from fastapi import APIRouter
from fieldtracker.api.v1.endpoints import auth, sync, license, conflicts, health

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(license.router, prefix="/license", tags=["license"])
api_router.include_router(conflicts.router, prefix="/conflicts", tags=["conflicts"])
