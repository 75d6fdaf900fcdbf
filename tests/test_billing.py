from decimal import Decimal
from types import SimpleNamespace

import pytest

from backend.app.services.billing import (
    calculate_entry_totals,
    calculate_invoice_totals,
    determine_invoice_status,
    is_suppressed,
    minutes_to_units,
    recalculate_invoice_totals,
)


@pytest.mark.parametrize(
    "minutes, expected",
    [
        (60, Decimal("4.00")),
        (90, Decimal("6.00")),
        (15, Decimal("1.00")),
        (20, Decimal("1.33")),
        (0, Decimal("0.00")),
        (None, Decimal("0.00")),
        (-30, Decimal("0.00")),
    ],
)
def test_minutes_to_units(minutes, expected):
    assert minutes_to_units(minutes) == expected


def test_ninety_minutes_at_twenty_dollars():
    totals = calculate_entry_totals(90, "DR", Decimal("20.00"), is_supervisory_timesheet=False)
    assert totals.units == Decimal("6.00")
    assert totals.amount == Decimal("120.00")


def test_supervision_on_standard_timesheet_is_shown_but_not_charged():
    totals = calculate_entry_totals(60, "SV", Decimal("20.00"), is_supervisory_timesheet=False)
    assert totals.units == Decimal("4.00")
    assert totals.amount == Decimal("0.00")


def test_supervision_on_supervisory_timesheet_is_charged():
    totals = calculate_entry_totals(60, "SV", Decimal("20.00"), is_supervisory_timesheet=True)
    assert totals.units == Decimal("4.00")
    assert totals.amount == Decimal("80.00")


def test_is_suppressed_only_for_sv_on_standard():
    assert is_suppressed("SV", False)
    assert not is_suppressed("SV", True)
    assert not is_suppressed("DR", False)
    assert not is_suppressed(None, False)


def test_invoice_totals_keep_suppressed_units_out_of_billable_units():
    totals = calculate_invoice_totals([(60, "DR"), (60, "SV"), (30, None)], Decimal("20.00"), False)
    assert totals.total_minutes == 150
    assert totals.total_units == Decimal("10.00")
    assert totals.billable_units == Decimal("6.00")
    assert totals.amount == Decimal("120.00")


def test_invoice_totals_accept_entry_objects():
    entries = [SimpleNamespace(minutes=45, service_tag="DR"), SimpleNamespace(minutes=45, service_tag="SV")]
    totals = calculate_invoice_totals(entries, "10.00", True)
    assert totals.amount == Decimal("60.00")


def _invoice(total, payments=(), adjustments=(), status="approved"):
    return SimpleNamespace(
        total_amount=Decimal(total),
        payments=[SimpleNamespace(amount=Decimal(p)) for p in payments],
        adjustment_records=[SimpleNamespace(amount=Decimal(a)) for a in adjustments],
        status=status,
        paid_amount=Decimal("0.00"),
        adjustments=Decimal("0.00"),
        outstanding=Decimal(total),
    )


def test_outstanding_is_total_minus_paid_plus_adjustments():
    invoice = _invoice("200.00", payments=["50.00"], adjustments=["-20.00", "5.00"])
    recalculate_invoice_totals(invoice)
    assert invoice.paid_amount == Decimal("50.00")
    assert invoice.adjustments == Decimal("-15.00")
    assert invoice.outstanding == Decimal("135.00")


def test_status_follows_balance():
    partial = _invoice("100.00", payments=["40.00"])
    recalculate_invoice_totals(partial)
    assert determine_invoice_status(partial) == "partially_paid"

    settled = _invoice("100.00", payments=["40.00", "60.00"])
    recalculate_invoice_totals(settled)
    assert determine_invoice_status(settled) == "paid"

    void = _invoice("100.00", payments=["100.00"], status="void")
    recalculate_invoice_totals(void)
    assert determine_invoice_status(void) == "void"
