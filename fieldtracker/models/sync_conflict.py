import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Enum, Index, Uuid
from sqlalchemy.sql import func
from fieldtracker.core.database import Base
from fieldtracker.sync.conflicts import ConflictSeverity, ConflictType


class ConflictAction(str, enum.Enum):
    KEEP_CLIENT = "keep_client"
    KEEP_SERVER = "keep_server"


class SyncConflict(Base):
    """A conflict the resolver could not settle, waiting for an operator."""
    __tablename__ = "sync_conflicts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(50), nullable=False)
    entity_guid = Column(Uuid(as_uuid=True), nullable=False, index=True)
    conflict_type = Column(Enum(ConflictType, values_callable=lambda x: [e.value for e in x]), nullable=False)
    severity = Column(Enum(ConflictSeverity, values_callable=lambda x: [e.value for e in x]), nullable=False)
    device_id = Column(String(255), nullable=True)
    client_data = Column(JSON, nullable=False)
    server_data = Column(JSON, nullable=False)
    resolved = Column(Boolean, nullable=False, default=False)
    resolution = Column(Enum(ConflictAction, values_callable=lambda x: [e.value for e in x]), nullable=True)
    resolved_by = Column(String(255), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_sync_conflicts_resolved_severity", "resolved", "severity"),
    )
