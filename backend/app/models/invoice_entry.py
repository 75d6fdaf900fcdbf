"""Invoice line: one per consumed time entry."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, func
from sqlalchemy.orm import relationship

from backend.app.db.base_class import Base


class InvoiceEntry(Base):
    __tablename__ = "invoice_entries"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    time_entry_id = Column(Integer, ForeignKey("time_entries.id"), nullable=False, index=True)
    timesheet_id = Column(Integer, ForeignKey("timesheets.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    insurance_id = Column(Integer, ForeignKey("insurances.id"), nullable=True)
    units = Column(Numeric(10, 2), nullable=False)
    rate = Column(Numeric(10, 2), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    invoice = relationship("Invoice", back_populates="entries")
    time_entry = relationship("TimeEntry")
    timesheet = relationship("Timesheet")
