from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from fieldtracker.core.database import Base


class BreakType(Base):
    __tablename__ = "break_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    is_paid = Column(Boolean, nullable=False, default=False)
    default_minutes = Column(Integer, nullable=False, default=15)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
