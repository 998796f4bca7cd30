from pydantic import Field
from typing import Optional

from fieldtracker.schemas.sync import SyncModel


class WorkerLoginRequest(SyncModel):
    employee_id: str = Field(..., min_length=1, max_length=50)
    pin: str = Field(..., min_length=4, max_length=8, pattern="^[0-9]+$")
    device_id: str = Field(..., min_length=1, max_length=255)


class AdminLoginRequest(SyncModel):
    password: str = Field(..., min_length=1, max_length=255)


class WorkerSummary(SyncModel):
    id: int
    employee_id: str
    name: str


class TokenResponse(SyncModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    worker: Optional[WorkerSummary] = None
    license_warnings: list[str] = Field(default_factory=list)


class PrincipalResponse(SyncModel):
    role: str
    worker: Optional[WorkerSummary] = None
    device_id: Optional[str] = None
