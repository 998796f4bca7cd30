import enum

from sqlalchemy import Column, Integer, String, DateTime, JSON, Enum, Index
from fieldtracker.core.database import Base


class SyncType(str, enum.Enum):
    PUSH = "push"
    PULL = "pull"


class SyncLogStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncLog(Base):
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(255), nullable=False)
    sync_type = Column(Enum(SyncType, values_callable=lambda x: [e.value for e in x]), nullable=False)
    records_processed = Column(Integer, nullable=False, default=0)
    records_succeeded = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    error_details = Column(JSON, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(Enum(SyncLogStatus, values_callable=lambda x: [e.value for e in x]), nullable=False, default=SyncLogStatus.RUNNING)

    __table_args__ = (
        Index("idx_sync_logs_device_started", "device_id", "started_at"),
    )
