"""Invoice lifecycle after generation: approval, payments, adjustments and corrections."""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from backend.app.core.errors import ValidationError
from backend.app.core.time import utc_now
from backend.app.models.invoice import Invoice
from backend.app.models.invoice_adjustment import InvoiceAdjustment
from backend.app.models.payment import Payment
from backend.app.models.queue_item import ENTITY_INVOICE, QueueItem
from backend.app.models.time_entry import TimeEntry
from backend.app.models.timesheet import Timesheet
from backend.app.services.audit import record_audit
from backend.app.services.billing import calculate_entry_totals, determine_invoice_status, recalculate_invoice_totals
from backend.app.services.delivery_queue import enqueue

logger = logging.getLogger(__name__)

APPROVABLE_STATUSES = ("draft",)
DELETABLE_STATUSES = ("draft",)


def get_invoice(db: Session, invoice_id: int) -> Invoice | None:
    return db.query(Invoice).filter(Invoice.id == invoice_id, Invoice.deleted_at.is_(None)).first()


def _ensure_open(invoice: Invoice, action: str) -> None:
    if invoice.deleted_at is not None:
        raise ValidationError(f"Cannot {action} a deleted invoice")
    if invoice.status == "void":
        raise ValidationError(f"Cannot {action} a void invoice")


def _refresh_balance(invoice: Invoice) -> None:
    recalculate_invoice_totals(invoice)
    invoice.status = determine_invoice_status(invoice)


def approve_invoice(db: Session, invoice: Invoice, actor_id: int | None = None) -> QueueItem:
    """Approve a draft invoice and queue it for delivery to the client."""
    _ensure_open(invoice, "approve")
    if invoice.status not in APPROVABLE_STATUSES:
        raise ValidationError(f"Only draft invoices can be approved (invoice is {invoice.status})")

    invoice.status = "approved"
    client = invoice.client
    recipients = [client.email] if client is not None and client.email else None
    item = enqueue(
        db,
        ENTITY_INVOICE,
        invoice.id,
        actor_id=actor_id,
        recipients=recipients,
        subject=f"Invoice {invoice.invoice_number}",
    )
    record_audit(db, "APPROVE", "Invoice", invoice.id, actor_id, {"invoice_number": invoice.invoice_number})
    db.commit()
    db.refresh(invoice)
    db.refresh(item)
    logger.info("Invoice %s approved and queued as item %s", invoice.invoice_number, item.id)
    return item


def record_payment(
    db: Session,
    invoice: Invoice,
    amount: Decimal,
    payment_date: date,
    reference_number: str | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> Payment:
    _ensure_open(invoice, "record a payment on")
    payment_amount = Decimal(str(amount))
    if payment_amount <= 0:
        raise ValidationError("Payment amount must be positive")
    if payment_date is None:
        raise ValidationError("Payment date is required")

    payment = Payment(
        invoice_id=invoice.id,
        amount=payment_amount,
        payment_date=payment_date,
        reference_number=reference_number,
        notes=notes,
        recorded_by=actor_id,
    )
    db.add(payment)
    invoice.payments.append(payment)
    _refresh_balance(invoice)
    db.flush()
    record_audit(
        db,
        "PAYMENT",
        "Invoice",
        invoice.id,
        actor_id,
        {"amount": str(payment_amount), "reference_number": reference_number, "status": invoice.status},
    )
    db.commit()
    db.refresh(payment)
    db.refresh(invoice)
    logger.info("Payment of %s recorded on invoice %s", payment_amount, invoice.invoice_number)
    return payment


def add_adjustment(
    db: Session,
    invoice: Invoice,
    amount: Decimal,
    reason: str | None = None,
    actor_id: int | None = None,
) -> InvoiceAdjustment:
    """Apply a signed adjustment: positive raises the balance, negative lowers it."""
    _ensure_open(invoice, "adjust")
    adjustment_amount = Decimal(str(amount))
    if adjustment_amount == 0:
        raise ValidationError("Adjustment amount cannot be zero")

    adjustment = InvoiceAdjustment(
        invoice_id=invoice.id,
        amount=adjustment_amount,
        reason=reason,
        created_by=actor_id,
    )
    db.add(adjustment)
    invoice.adjustment_records.append(adjustment)
    _refresh_balance(invoice)
    db.flush()
    record_audit(db, "ADJUSTMENT", "Invoice", invoice.id, actor_id, {"amount": str(adjustment_amount), "reason": reason})
    db.commit()
    db.refresh(adjustment)
    db.refresh(invoice)
    return adjustment


def recalculate_invoice(db: Session, invoice: Invoice, actor_id: int | None = None) -> Invoice:
    """Recompute every line from its source time entry at the line's stored rate."""
    _ensure_open(invoice, "recalculate")
    previous_total = Decimal(str(invoice.total_amount or 0))

    total = Decimal("0.00")
    for line in invoice.entries:
        entry = db.get(TimeEntry, line.time_entry_id)
        timesheet = db.get(Timesheet, line.timesheet_id)
        if entry is None or timesheet is None:
            logger.warning("Invoice %s line %s lost its source entry; keeping stored amount", invoice.id, line.id)
            total += Decimal(str(line.amount or 0))
            continue
        totals = calculate_entry_totals(entry.minutes, entry.service_tag, line.rate, timesheet.is_supervisory)
        line.units = totals.units
        line.amount = totals.amount
        total += totals.amount

    invoice.total_amount = total
    _refresh_balance(invoice)
    record_audit(
        db,
        "RECALCULATE",
        "Invoice",
        invoice.id,
        actor_id,
        {"previous_total": str(previous_total), "total_amount": str(total)},
    )
    db.commit()
    db.refresh(invoice)
    if total != previous_total:
        logger.info("Invoice %s total changed %s -> %s", invoice.invoice_number, previous_total, total)
    return invoice


def delete_invoice(db: Session, invoice: Invoice, actor_id: int | None = None) -> Invoice:
    """Soft-delete a draft invoice and release its time entries for billing again."""
    if invoice.deleted_at is not None:
        raise ValidationError("Invoice is already deleted")
    if invoice.status not in DELETABLE_STATUSES:
        raise ValidationError(f"Only draft invoices can be deleted (invoice is {invoice.status})")

    entry_ids = [line.time_entry_id for line in invoice.entries]
    if entry_ids:
        db.execute(
            update(TimeEntry).where(TimeEntry.id.in_(entry_ids)).values(billed=False),
            execution_options={"synchronize_session": False},
        )
    db.execute(
        update(Timesheet)
        .where(Timesheet.invoice_id == invoice.id)
        .values(invoice_id=None, invoiced_at=None),
        execution_options={"synchronize_session": False},
    )
    invoice.deleted_at = utc_now()
    record_audit(
        db,
        "DELETE",
        "Invoice",
        invoice.id,
        actor_id,
        {"invoice_number": invoice.invoice_number, "released_entries": len(entry_ids)},
    )
    db.commit()
    db.refresh(invoice)
    logger.info("Invoice %s deleted; %s entries released", invoice.invoice_number, len(entry_ids))
    return invoice
