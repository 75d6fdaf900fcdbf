"""Delivery queue item: one document awaiting dispatch."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from backend.app.db.base_class import Base
from backend.app.core.time import utc_now

QUEUED = "QUEUED"
SENDING = "SENDING"
SENT = "SENT"
FAILED = "FAILED"
QUEUE_STATUSES = (QUEUED, SENDING, SENT, FAILED)

ENTITY_INVOICE = "invoice"
ENTITY_TIMESHEET = "timesheet"
ENTITY_TYPES = (ENTITY_INVOICE, ENTITY_TIMESHEET)


class QueueItem(Base):
    __tablename__ = "queue_items"
    __table_args__ = (Index("ix_queue_items_entity", "entity_type", "entity_id"),)

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(Integer, nullable=False)
    status = Column(String(10), nullable=False, default=QUEUED, index=True)
    recipients = Column(Text, nullable=True)
    subject = Column(String(255), nullable=True)
    queued_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    claim_token = Column(String(64), nullable=True, index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    batch_id = Column(String(64), nullable=True, index=True)
    error_message = Column(String(500), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    queued_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    @property
    def recipient_list(self) -> list[str]:
        if not self.recipients:
            return []
        return [value.strip() for value in self.recipients.split(",") if value.strip()]
