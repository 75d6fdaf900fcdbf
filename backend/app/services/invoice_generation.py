"""Weekly invoice generation from approved timesheets.

Approved, unbilled time entries are pooled per (client, Monday-start week).
Each pool becomes one invoice inside its own transaction, so a failure in one
group never rolls back another, and the overall run reports created, skipped
and failed groups separately.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable

from sqlalchemy import exists, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.core.errors import ConcurrencyConflict, DuplicateInvoiceError, MissingRateError, ValidationError
from backend.app.core.time import utc_now, week_end, week_start
from backend.app.models.insurance import Insurance
from backend.app.models.invoice import Invoice
from backend.app.models.invoice_entry import InvoiceEntry
from backend.app.models.time_entry import TimeEntry
from backend.app.models.timesheet import BILLABLE_TIMESHEET_STATUSES, Timesheet
from backend.app.services.audit import record_audit
from backend.app.services.billing import calculate_entry_totals
from backend.app.services.invoice_numbers import allocate_invoice_number
from backend.app.services.rates import resolve_rate

logger = logging.getLogger(__name__)

MAX_NUMBER_ATTEMPTS = 5


@dataclass
class InvoiceGroup:
    client_id: int
    week_start: date
    week_end: date
    timesheets: list[Timesheet] = field(default_factory=list)
    entries: list[TimeEntry] = field(default_factory=list)

    @property
    def client_name(self) -> str:
        client = self.timesheets[0].client if self.timesheets else None
        return client.name if client is not None else f"#{self.client_id}"

    @property
    def label(self) -> str:
        return f"Client \"{self.client_name}\" - Week {self.week_start:%b %d, %Y} to {self.week_end:%b %d, %Y}"


@dataclass
class CreatedInvoice:
    invoice_id: int
    invoice_number: str
    client_id: int
    week_start: date
    week_end: date
    total_amount: Decimal
    total_units: Decimal
    entry_count: int


@dataclass
class SkippedGroup:
    client_id: int
    week_start: date
    week_end: date
    reason: str
    invoice_number: str | None = None


@dataclass
class GroupError:
    client_id: int
    week_start: date
    message: str


@dataclass
class GenerationResult:
    created: list[CreatedInvoice] = field(default_factory=list)
    skipped: list[SkippedGroup] = field(default_factory=list)
    errors: list[GroupError] = field(default_factory=list)


def select_eligible_timesheets(
    db: Session, timesheet_ids: Iterable[int], standard_only: bool = False
) -> list[Timesheet]:
    """Timesheets that are live, approved or emailed, and still hold unbilled entries."""
    ids = list(dict.fromkeys(timesheet_ids))
    if not ids:
        return []
    has_unbilled = exists().where(TimeEntry.timesheet_id == Timesheet.id, TimeEntry.billed.is_(False))
    query = db.query(Timesheet).filter(
        Timesheet.id.in_(ids),
        Timesheet.deleted_at.is_(None),
        Timesheet.status.in_(BILLABLE_TIMESHEET_STATUSES),
        has_unbilled,
    )
    if standard_only:
        query = query.filter(Timesheet.is_supervisory.is_(False))
    return query.order_by(Timesheet.id).all()


def group_by_client_week(timesheets: Iterable[Timesheet]) -> list[InvoiceGroup]:
    groups: dict[tuple[int, date], InvoiceGroup] = {}
    for timesheet in timesheets:
        unbilled = [entry for entry in timesheet.entries if not entry.billed]
        if not unbilled:
            continue
        monday = week_start(timesheet.start_date)
        key = (timesheet.client_id, monday)
        group = groups.get(key)
        if group is None:
            group = InvoiceGroup(client_id=timesheet.client_id, week_start=monday, week_end=week_end(monday))
            groups[key] = group
        group.timesheets.append(timesheet)
        group.entries.extend(unbilled)
    return [groups[key] for key in sorted(groups)]


def find_overlapping_invoice(db: Session, client_id: int, start: date, end: date) -> Invoice | None:
    return (
        db.query(Invoice)
        .filter(
            Invoice.client_id == client_id,
            Invoice.deleted_at.is_(None),
            Invoice.start_date <= end,
            Invoice.end_date >= start,
        )
        .order_by(Invoice.id)
        .first()
    )


def _group_insurance(db: Session, group: InvoiceGroup) -> Insurance | None:
    for timesheet in group.timesheets:
        if timesheet.insurance_id is None:
            continue
        insurance = db.get(Insurance, timesheet.insurance_id)
        if insurance is not None and insurance.deleted_at is None:
            return insurance
    client = group.timesheets[0].client
    return client.insurance if client is not None else None


def _resolve_group_rates(db: Session, group: InvoiceGroup) -> tuple[Insurance, dict[bool, Decimal]]:
    insurance = _group_insurance(db, group)
    rates: dict[bool, Decimal] = {}
    for is_supervisory in sorted({ts.is_supervisory for ts in group.timesheets}):
        rate, _unit_minutes = resolve_rate(insurance, is_supervisory)
        rates[is_supervisory] = rate
    return insurance, rates


def _insert_invoice_header(db: Session, group: InvoiceGroup, total: Decimal, actor_id: int | None) -> Invoice:
    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
        invoice_number = allocate_invoice_number(db)
        invoice = Invoice(
            invoice_number=invoice_number,
            client_id=group.client_id,
            start_date=group.week_start,
            end_date=group.week_end,
            total_amount=total,
            paid_amount=Decimal("0.00"),
            adjustments=Decimal("0.00"),
            outstanding=total,
            status="draft",
            created_by=actor_id,
        )
        try:
            with db.begin_nested():
                db.add(invoice)
                db.flush()
            return invoice
        except IntegrityError:
            logger.warning("Invoice number %s collided (attempt %s); allocating again", invoice_number, attempt)
    raise ConcurrencyConflict("Could not allocate a unique invoice number")


def _create_group_invoice(db: Session, group: InvoiceGroup, actor_id: int | None) -> CreatedInvoice:
    insurance, rates = _resolve_group_rates(db, group)

    existing = find_overlapping_invoice(db, group.client_id, group.week_start, group.week_end)
    if existing is not None:
        raise DuplicateInvoiceError("invoice already exists", invoice_number=existing.invoice_number)

    timesheets_by_id = {ts.id: ts for ts in group.timesheets}
    entry_ids = [entry.id for entry in group.entries]

    # Conditional flip doubles as the lock against a concurrent run for the same entries
    claimed = db.execute(
        update(TimeEntry)
        .where(TimeEntry.id.in_(entry_ids), TimeEntry.billed.is_(False))
        .values(billed=True),
        execution_options={"synchronize_session": False},
    ).rowcount
    if claimed != len(entry_ids):
        raise DuplicateInvoiceError("entries already billed by another run")

    lines = []
    total_amount = Decimal("0.00")
    total_units = Decimal("0.00")
    for entry in group.entries:
        timesheet = timesheets_by_id[entry.timesheet_id]
        rate = rates[timesheet.is_supervisory]
        totals = calculate_entry_totals(entry.minutes, entry.service_tag, rate, timesheet.is_supervisory)
        total_amount += totals.amount
        total_units += totals.units
        lines.append((entry, timesheet, rate, totals))

    invoice = _insert_invoice_header(db, group, total_amount, actor_id)
    for entry, timesheet, rate, totals in lines:
        db.add(
            InvoiceEntry(
                invoice_id=invoice.id,
                time_entry_id=entry.id,
                timesheet_id=timesheet.id,
                provider_id=timesheet.provider_id,
                insurance_id=insurance.id if insurance is not None else None,
                units=totals.units,
                rate=rate,
                amount=totals.amount,
            )
        )

    db.execute(
        update(Timesheet)
        .where(Timesheet.id.in_(list(timesheets_by_id)), Timesheet.invoice_id.is_(None))
        .values(invoice_id=invoice.id, invoiced_at=utc_now()),
        execution_options={"synchronize_session": False},
    )
    db.flush()

    record_audit(
        db,
        "CREATE",
        "Invoice",
        invoice.id,
        actor_id,
        {
            "invoice_number": invoice.invoice_number,
            "client_id": group.client_id,
            "total_amount": str(total_amount),
            "total_units": str(total_units),
            "timesheet_count": len(group.timesheets),
        },
    )
    logger.info(
        "Created invoice %s for client %s week %s: %s entries, %s units, $%s",
        invoice.invoice_number,
        group.client_id,
        group.week_start,
        len(lines),
        total_units,
        total_amount,
    )
    return CreatedInvoice(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        client_id=group.client_id,
        week_start=group.week_start,
        week_end=group.week_end,
        total_amount=total_amount,
        total_units=total_units,
        entry_count=len(lines),
    )


def generate_invoices(
    db: Session,
    timesheet_ids: Iterable[int],
    actor_id: int | None = None,
    standard_only: bool = False,
) -> GenerationResult:
    """Create one invoice per eligible (client, week) group; never all-or-nothing across groups."""
    ids = [int(value) for value in timesheet_ids]
    if not ids:
        raise ValidationError("No timesheets selected")

    result = GenerationResult()
    groups = group_by_client_week(select_eligible_timesheets(db, ids, standard_only=standard_only))
    logger.info("Invoice generation: %s timesheet id(s), %s group(s)", len(ids), len(groups))

    for group in groups:
        existing = find_overlapping_invoice(db, group.client_id, group.week_start, group.week_end)
        if existing is not None:
            result.skipped.append(
                SkippedGroup(
                    client_id=group.client_id,
                    week_start=group.week_start,
                    week_end=group.week_end,
                    reason=f"{group.label} (Invoice {existing.invoice_number} already exists)",
                    invoice_number=existing.invoice_number,
                )
            )
            continue

        try:
            created = _create_group_invoice(db, group, actor_id)
            db.commit()
        except DuplicateInvoiceError as exc:
            db.rollback()
            result.skipped.append(
                SkippedGroup(
                    client_id=group.client_id,
                    week_start=group.week_start,
                    week_end=group.week_end,
                    reason=f"{group.label} ({exc})",
                    invoice_number=exc.invoice_number,
                )
            )
            continue
        except MissingRateError as exc:
            db.rollback()
            logger.error("MISSING_INSURANCE_RATE for %s: %s", group.label, exc)
            result.errors.append(
                GroupError(group.client_id, group.week_start, f"MISSING_INSURANCE_RATE: {group.label}: {exc}")
            )
            continue
        except (ConcurrencyConflict, SQLAlchemyError) as exc:
            db.rollback()
            logger.exception("Failed to create invoice for %s", group.label)
            result.errors.append(
                GroupError(group.client_id, group.week_start, f"Failed to create invoice for {group.label}: {exc}")
            )
            continue
        result.created.append(created)

    return result
