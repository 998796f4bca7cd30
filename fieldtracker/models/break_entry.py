from sqlalchemy import Column, Integer, Text, Boolean, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldtracker.core.database import Base


class BreakEntry(Base):
    __tablename__ = "break_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    offline_guid = Column(Uuid(as_uuid=True), nullable=False, unique=True)
    time_entry_id = Column(Integer, ForeignKey("time_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    time_entry_offline_guid = Column(Uuid(as_uuid=True), nullable=False, index=True)
    break_type_id = Column(Integer, ForeignKey("break_types.id"), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    is_synced = Column(Boolean, nullable=False, default=True)
    has_conflict = Column(Boolean, nullable=False, default=False)
    conflict_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    time_entry = relationship("TimeEntry", back_populates="break_entries")
    break_type = relationship("BreakType")
