from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Index
from sqlalchemy.sql import func
from fieldtracker.core.database import Base


class License(Base):
    __tablename__ = "licenses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    license_id = Column(String(255), nullable=False, index=True)
    seats_max = Column(Integer, nullable=False)
    expiry_updates = Column(DateTime(timezone=True), nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    issuer = Column(String(255), nullable=False)
    signature = Column(Text, nullable=False)
    # The uploaded .license file, kept verbatim so it can be re-verified exactly
    document = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    uploaded_by = Column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_licenses_active_uploaded", "is_active", "uploaded_at"),
    )
