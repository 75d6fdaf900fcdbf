"""Time entry model: one contiguous interval of service."""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, String, Time
from sqlalchemy.orm import relationship

from backend.app.db.base_class import Base

SERVICE_TAG_DIRECT = "DR"
SERVICE_TAG_SUPERVISION = "SV"


class TimeEntry(Base):
    __tablename__ = "time_entries"

    id = Column(Integer, primary_key=True, index=True)
    timesheet_id = Column(Integer, ForeignKey("timesheets.id"), nullable=False, index=True)
    entry_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    minutes = Column(Integer, nullable=False)
    service_tag = Column(String(10), nullable=True)
    billed = Column(Boolean, nullable=False, default=False, index=True)

    timesheet = relationship("Timesheet", back_populates="entries")
