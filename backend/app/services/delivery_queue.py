"""Delivery queue state machine: QUEUED -> SENDING -> SENT | FAILED.

Every transition is a conditional UPDATE on the current status, so two
requests racing for the same items cannot both move them. A claim stamps the
flipped rows with a fresh ``claim_token``; resolution touches only rows that
still carry that token and are still SENDING.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.orm import Session

from backend.app.core.errors import InvalidQueueTransition, QueueItemNotFound, ValidationError
from backend.app.core.settings import get_settings
from backend.app.core.time import utc_now
from backend.app.models.invoice import Invoice
from backend.app.models.queue_item import (
    ENTITY_INVOICE,
    ENTITY_TIMESHEET,
    ENTITY_TYPES,
    FAILED,
    QUEUED,
    SENDING,
    SENT,
    QueueItem,
)
from backend.app.models.timesheet import Timesheet
from backend.app.services.audit import record_audit

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500
STUCK_ERROR_MESSAGE = "Delivery attempt abandoned while SENDING"


@dataclass
class MissingEntity:
    queue_item_id: int
    entity_type: str
    entity_id: int
    reason: str


@dataclass
class ClaimResult:
    claim_token: str
    items: list[QueueItem] = field(default_factory=list)
    missing: list[MissingEntity] = field(default_factory=list)


def load_backing_entity(db: Session, entity_type: str, entity_id: int):
    """Return the live invoice or timesheet behind a queue item, or None."""
    model = {ENTITY_INVOICE: Invoice, ENTITY_TIMESHEET: Timesheet}.get(entity_type)
    if model is None:
        return None
    entity = db.get(model, entity_id)
    if entity is None or entity.deleted_at is not None:
        return None
    return entity


def enqueue(
    db: Session,
    entity_type: str,
    entity_id: int,
    actor_id: int | None = None,
    recipients: Iterable[str] | None = None,
    subject: str | None = None,
) -> QueueItem:
    """Add a QUEUED item; an entity already waiting or sending keeps its existing item.

    The caller owns the transaction.
    """
    if entity_type not in ENTITY_TYPES:
        raise ValidationError(f"Unsupported queue entity type: {entity_type}")

    active = (
        db.query(QueueItem)
        .filter(
            QueueItem.entity_type == entity_type,
            QueueItem.entity_id == entity_id,
            QueueItem.status.in_((QUEUED, SENDING)),
            QueueItem.deleted_at.is_(None),
        )
        .first()
    )
    if active is not None:
        return active

    recipient_value = ", ".join(r.strip() for r in recipients or [] if r and r.strip()) or None
    item = QueueItem(
        entity_type=entity_type,
        entity_id=entity_id,
        status=QUEUED,
        recipients=recipient_value,
        subject=subject,
        queued_at=utc_now(),
        queued_by=actor_id,
    )
    db.add(item)
    db.flush()
    record_audit(db, "QUEUE", "QueueItem", item.id, actor_id, {"entity_type": entity_type, "entity_id": entity_id})
    return item


def claim(db: Session, item_ids: Iterable[int] | None = None, limit: int | None = None) -> ClaimResult:
    """Flip QUEUED items to SENDING under one conditional UPDATE and return what this call won.

    ``item_ids=None`` claims every eligible item. Items whose invoice or
    timesheet is gone stay QUEUED and are reported in ``missing``.
    """
    query = db.query(QueueItem).filter(QueueItem.status == QUEUED, QueueItem.deleted_at.is_(None))
    if item_ids is not None:
        ids = list(item_ids)
        if not ids:
            return ClaimResult(claim_token=uuid.uuid4().hex)
        query = query.filter(QueueItem.id.in_(ids))
    query = query.order_by(QueueItem.queued_at.asc(), QueueItem.id.asc())
    if limit:
        query = query.limit(limit)

    result = ClaimResult(claim_token=uuid.uuid4().hex)
    claimable: list[int] = []
    for item in query.all():
        if load_backing_entity(db, item.entity_type, item.entity_id) is None:
            logger.warning(
                "Queue item %s references missing %s %s; leaving it for cleanup",
                item.id,
                item.entity_type,
                item.entity_id,
            )
            result.missing.append(MissingEntity(item.id, item.entity_type, item.entity_id, "not found or deleted"))
            continue
        claimable.append(item.id)

    if not claimable:
        return result

    db.execute(
        update(QueueItem)
        .where(QueueItem.id.in_(claimable), QueueItem.status == QUEUED, QueueItem.deleted_at.is_(None))
        .values(status=SENDING, claim_token=result.claim_token, claimed_at=utc_now()),
        execution_options={"synchronize_session": False},
    )
    db.commit()

    result.items = (
        db.query(QueueItem)
        .filter(QueueItem.claim_token == result.claim_token, QueueItem.status == SENDING)
        .order_by(QueueItem.queued_at.asc(), QueueItem.id.asc())
        .all()
    )
    logger.info("Claimed %s of %s queue item(s) with token %s", len(result.items), len(claimable), result.claim_token)
    return result


def resolve_sent(db: Session, claim_token: str, batch_id: str, sent_at: datetime | None = None) -> int:
    """Mark every item of a claim SENT with a shared timestamp and batch id; commits."""
    resolved = db.execute(
        update(QueueItem)
        .where(QueueItem.claim_token == claim_token, QueueItem.status == SENDING)
        .values(
            status=SENT,
            sent_at=sent_at or utc_now(),
            batch_id=batch_id,
            error_message=None,
            attempts=QueueItem.attempts + 1,
        ),
        execution_options={"synchronize_session": False},
    ).rowcount
    db.commit()
    return resolved


def resolve_failed(db: Session, claim_token: str, error: str) -> int:
    """Mark every item of a claim FAILED with the same error message; commits."""
    message = (error or "Unknown delivery error")[:MAX_ERROR_LENGTH]
    resolved = db.execute(
        update(QueueItem)
        .where(QueueItem.claim_token == claim_token, QueueItem.status == SENDING)
        .values(status=FAILED, error_message=message, attempts=QueueItem.attempts + 1),
        execution_options={"synchronize_session": False},
    ).rowcount
    db.commit()
    return resolved


def _get_item(db: Session, item_id: int) -> QueueItem:
    item = db.get(QueueItem, item_id)
    if item is None or item.deleted_at is not None:
        raise QueueItemNotFound(f"Queue item {item_id} not found")
    return item


def remove_from_queue(db: Session, item_id: int, actor_id: int | None = None) -> QueueItem:
    """Soft-delete a QUEUED item; the invoice or timesheet behind it is untouched."""
    item = _get_item(db, item_id)
    if item.status != QUEUED:
        raise InvalidQueueTransition(f"Only QUEUED items can be removed (item is {item.status})")

    removed = db.execute(
        update(QueueItem)
        .where(QueueItem.id == item_id, QueueItem.status == QUEUED, QueueItem.deleted_at.is_(None))
        .values(deleted_at=utc_now(), deleted_by=actor_id),
        execution_options={"synchronize_session": False},
    ).rowcount
    if removed != 1:
        db.rollback()
        raise InvalidQueueTransition(f"Queue item {item_id} was claimed before it could be removed")
    record_audit(db, "DELETE", "QueueItem", item_id, actor_id, {"entity_type": item.entity_type})
    db.commit()
    db.refresh(item)
    return item


def remove_many_from_queue(db: Session, item_ids: Iterable[int], actor_id: int | None = None) -> list[int]:
    """Soft-delete every listed item that is still QUEUED; return the ids actually removed."""
    wanted = sorted(set(item_ids or []))
    if not wanted:
        raise ValidationError("Provide at least one queue item id to remove")

    removed = (
        db.execute(
            update(QueueItem)
            .where(QueueItem.id.in_(wanted), QueueItem.status == QUEUED, QueueItem.deleted_at.is_(None))
            .values(deleted_at=utc_now(), deleted_by=actor_id)
            .returning(QueueItem.id),
            execution_options={"synchronize_session": False},
        )
        .scalars()
        .all()
    )
    if not removed:
        db.rollback()
        raise QueueItemNotFound("No QUEUED items found to remove")
    for item_id in removed:
        record_audit(db, "DELETE", "QueueItem", item_id, actor_id, {"bulk": True})
    db.commit()
    logger.info("Removed %s of %s requested queue item(s)", len(removed), len(wanted))
    return sorted(removed)


def requeue(db: Session, item_id: int, actor_id: int | None = None) -> QueueItem:
    """Explicitly return a FAILED item to QUEUED for another attempt."""
    item = _get_item(db, item_id)
    if item.status != FAILED:
        raise InvalidQueueTransition(f"Only FAILED items can be re-queued (item is {item.status})")

    moved = db.execute(
        update(QueueItem)
        .where(QueueItem.id == item_id, QueueItem.status == FAILED, QueueItem.deleted_at.is_(None))
        .values(status=QUEUED, claim_token=None, claimed_at=None, queued_at=utc_now()),
        execution_options={"synchronize_session": False},
    ).rowcount
    if moved != 1:
        db.rollback()
        raise InvalidQueueTransition(f"Queue item {item_id} changed state before it could be re-queued")
    record_audit(db, "REQUEUE", "QueueItem", item_id, actor_id, {"previous_error": item.error_message})
    db.commit()
    db.refresh(item)
    return item


def _stuck_cutoff(older_than: timedelta | None) -> datetime:
    threshold = older_than if older_than is not None else timedelta(minutes=get_settings().stuck_sending_minutes)
    return utc_now() - threshold


def find_stuck_items(db: Session, older_than: timedelta | None = None) -> list[QueueItem]:
    """SENDING items claimed before the threshold; nothing re-claims these automatically."""
    return (
        db.query(QueueItem)
        .filter(QueueItem.status == SENDING, QueueItem.claimed_at < _stuck_cutoff(older_than))
        .order_by(QueueItem.claimed_at.asc())
        .all()
    )


def fail_stuck_items(db: Session, older_than: timedelta | None = None, actor_id: int | None = None) -> int:
    stuck_ids = [item.id for item in find_stuck_items(db, older_than)]
    if not stuck_ids:
        return 0
    failed = db.execute(
        update(QueueItem)
        .where(QueueItem.id.in_(stuck_ids), QueueItem.status == SENDING)
        .values(status=FAILED, error_message=STUCK_ERROR_MESSAGE, attempts=QueueItem.attempts + 1),
        execution_options={"synchronize_session": False},
    ).rowcount
    for item_id in stuck_ids:
        record_audit(db, "EMAIL_FAILED", "QueueItem", item_id, actor_id, {"reason": "stuck in SENDING"})
    db.commit()
    logger.warning("Failed %s stuck SENDING queue item(s)", failed)
    return failed


def list_queue(db: Session, status: str | None = None, skip: int = 0, limit: int = 100) -> list[QueueItem]:
    query = db.query(QueueItem).filter(QueueItem.deleted_at.is_(None))
    if status:
        query = query.filter(QueueItem.status == status)
    return query.order_by(QueueItem.queued_at.desc(), QueueItem.id.desc()).offset(skip).limit(limit).all()
