from pydantic import Field
from typing import Optional
from datetime import datetime

from fieldtracker.schemas.sync import SyncModel, UtcDatetime


class LicenseInfo(SyncModel):
    license_id: str
    seats_max: int
    expiry_updates: Optional[UtcDatetime] = None
    issued_at: UtcDatetime
    issuer: str
    uploaded_at: Optional[UtcDatetime] = None
    uploaded_by: Optional[str] = None


class LicenseStatusResponse(SyncModel):
    installed: bool
    is_valid: bool
    seats_used: int = 0
    seats_max: int = 0
    days_until_expiry: Optional[int] = None
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    license: Optional[LicenseInfo] = None
    checked_at: datetime
