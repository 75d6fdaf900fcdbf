"""Payer record holding per-program billing rates."""

from sqlalchemy import Column, DateTime, Integer, Numeric, String

from backend.app.db.base_class import Base
from backend.app.core.time import utc_now


class Insurance(Base):
    __tablename__ = "insurances"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    # Legacy single rate, used when a program-specific rate is not set
    rate_per_unit = Column(Numeric(10, 2), nullable=True)
    regular_rate_per_unit = Column(Numeric(10, 2), nullable=True)
    regular_unit_minutes = Column(Integer, nullable=True)
    supervisory_rate_per_unit = Column(Numeric(10, 2), nullable=True)
    supervisory_unit_minutes = Column(Integer, nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
