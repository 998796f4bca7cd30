from sqlalchemy import Column, Integer, String, Text, Float, Boolean, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldtracker.core.database import Base


class TimeEntry(Base):
    __tablename__ = "time_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Client-generated identity; the idempotency key for every push
    offline_guid = Column(Uuid(as_uuid=True), nullable=False, unique=True)
    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=False, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    start_latitude = Column(Float, nullable=True)
    start_longitude = Column(Float, nullable=True)
    end_latitude = Column(Float, nullable=True)
    end_longitude = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    regular_hours = Column(Float, nullable=True)
    overtime_hours = Column(Float, nullable=True)
    is_synced = Column(Boolean, nullable=False, default=True)
    has_conflict = Column(Boolean, nullable=False, default=False)
    conflict_reason = Column(Text, nullable=True)
    device_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    # Logical modification time as reported by the device that last won
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    worker = relationship("Worker", back_populates="time_entries")
    job = relationship("Job")
    break_entries = relationship("BreakEntry", back_populates="time_entry", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_time_entries_worker_start", "worker_id", "start_time"),
        Index("idx_time_entries_conflict", "has_conflict"),
    )
