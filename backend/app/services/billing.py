"""Billing calculations shared by invoice generation and correction.

Every unit and amount on an invoice comes from ``calculate_entry_totals`` so
the units shown and the dollars charged cannot drift apart.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from backend.app.models.time_entry import SERVICE_TAG_SUPERVISION

CENTS = Decimal("0.01")
UNITS_PER_HOUR = Decimal("4")


@dataclass(frozen=True)
class EntryTotals:
    units: Decimal
    amount: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    total_minutes: int
    total_units: Decimal
    billable_units: Decimal
    amount: Decimal


def minutes_to_units(minutes: int | None) -> Decimal:
    """Hours x 4, kept fractional and rounded to two places (90 min -> 6.00)."""
    if not minutes or minutes <= 0:
        return Decimal("0.00")
    units = Decimal(minutes) / Decimal("60") * UNITS_PER_HOUR
    return units.quantize(CENTS, rounding=ROUND_HALF_UP)


def is_suppressed(service_tag: str | None, is_supervisory_timesheet: bool) -> bool:
    """Supervision on a standard timesheet is shown but billed on the supervisory track."""
    return service_tag == SERVICE_TAG_SUPERVISION and not is_supervisory_timesheet


def calculate_entry_totals(
    minutes: int | None,
    service_tag: str | None,
    rate_per_unit: Decimal | float,
    is_supervisory_timesheet: bool,
) -> EntryTotals:
    units = minutes_to_units(minutes)
    rate = Decimal(str(rate_per_unit))
    if is_suppressed(service_tag, is_supervisory_timesheet):
        amount = Decimal("0.00")
    else:
        amount = (units * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
    return EntryTotals(units=units, amount=amount)


def calculate_invoice_totals(
    entries: Iterable,
    rate_per_unit: Decimal | float,
    is_supervisory_timesheet: bool,
) -> InvoiceTotals:
    """Aggregate ``(minutes, service_tag)`` pairs or entry objects under one rate."""
    total_minutes = 0
    total_units = Decimal("0.00")
    billable_units = Decimal("0.00")
    amount = Decimal("0.00")
    for entry in entries:
        if isinstance(entry, tuple):
            minutes, service_tag = entry
        else:
            minutes, service_tag = entry.minutes, entry.service_tag
        totals = calculate_entry_totals(minutes, service_tag, rate_per_unit, is_supervisory_timesheet)
        total_minutes += minutes or 0
        total_units += totals.units
        if not is_suppressed(service_tag, is_supervisory_timesheet):
            billable_units += totals.units
        amount += totals.amount
    return InvoiceTotals(
        total_minutes=total_minutes,
        total_units=total_units,
        billable_units=billable_units,
        amount=amount,
    )


def recalculate_invoice_totals(invoice) -> None:
    """Refresh paid/adjustment/outstanding figures from the invoice's records."""
    paid = sum((p.amount for p in invoice.payments if p.amount is not None), Decimal("0.00"))
    adjustments = sum((a.amount for a in invoice.adjustment_records if a.amount is not None), Decimal("0.00"))
    total = Decimal(str(invoice.total_amount or 0))
    invoice.paid_amount = paid
    invoice.adjustments = adjustments
    invoice.outstanding = total - paid + adjustments


def determine_invoice_status(invoice) -> str:
    if invoice.status == "void":
        return invoice.status
    if invoice.outstanding <= 0 and (invoice.paid_amount > 0 or invoice.total_amount > 0):
        return "paid"
    if invoice.paid_amount > 0:
        return "partially_paid"
    if invoice.status in ("paid", "partially_paid"):
        return "approved"
    return invoice.status
