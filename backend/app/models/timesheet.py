"""Timesheet model: one approval unit of time entries."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from backend.app.db.base_class import Base
from backend.app.core.time import utc_now

TIMESHEET_STATUSES = ("draft", "submitted", "approved", "rejected", "emailed")
BILLABLE_TIMESHEET_STATUSES = ("approved", "emailed")


class Timesheet(Base):
    __tablename__ = "timesheets"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    insurance_id = Column(Integer, ForeignKey("insurances.id"), nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="draft")
    is_supervisory = Column(Boolean, nullable=False, default=False)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True, index=True)
    invoiced_at = Column(DateTime(timezone=True), nullable=True)
    emailed_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(String(500), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    provider = relationship("Provider", back_populates="timesheets")
    client = relationship("Client", back_populates="timesheets")
    insurance = relationship("Insurance")
    invoice = relationship("Invoice", foreign_keys=[invoice_id])
    entries = relationship(
        "TimeEntry",
        back_populates="timesheet",
        cascade="all, delete-orphan",
        order_by="TimeEntry.id",
    )
