import threading
from datetime import date, timedelta
from decimal import Decimal

import pytest

from backend.app.core.errors import DuplicateInvoiceError, ValidationError
from backend.app.db.base import Base
from backend.app.db.session import SessionLocal, engine
from backend.app.models.audit_log import AuditLog
from backend.app.models.invoice import Invoice
from backend.app.models.invoice_entry import InvoiceEntry
from backend.app.models.time_entry import TimeEntry
from backend.app.models.timesheet import Timesheet
from backend.app.services.invoice_generation import (
    _create_group_invoice,
    find_overlapping_invoice,
    generate_invoices,
    group_by_client_week,
    select_eligible_timesheets,
)
from tests.factories import (
    WEEK_ONE,
    WEEK_TWO,
    create_client,
    create_insurance,
    create_provider,
    create_timesheet,
)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def _insured_client(db, name="Jamie Rivera", rate="20.00", supervisory_rate=None):
    insurance = create_insurance(db, name=f"{name} plan", regular_rate=rate, supervisory_rate=supervisory_rate)
    return create_client(db, name=name, insurance=insurance)


def test_group_by_client_week_uses_monday_start():
    db = SessionLocal()
    provider = create_provider(db)
    client = _insured_client(db)
    wednesday = WEEK_ONE + timedelta(days=2)
    first = create_timesheet(db, provider, client, start_date=WEEK_ONE)
    second = create_timesheet(db, provider, client, start_date=wednesday, entries=[(wednesday, "13:00", "14:00", "DR")])
    third = create_timesheet(db, provider, client, start_date=WEEK_TWO, entries=[(WEEK_TWO, "09:00", "09:30", "DR")])

    groups = group_by_client_week(select_eligible_timesheets(db, [first.id, second.id, third.id]))

    assert [(g.week_start, g.week_end) for g in groups] == [
        (WEEK_ONE, date(2030, 1, 13)),
        (WEEK_TWO, date(2030, 1, 20)),
    ]
    assert sorted(ts.id for ts in groups[0].timesheets) == [first.id, second.id]
    assert len(groups[0].entries) == 2
    db.close()


def test_select_eligible_skips_drafts_deleted_and_fully_billed():
    db = SessionLocal()
    provider = create_provider(db)
    client = _insured_client(db)
    approved = create_timesheet(db, provider, client)
    emailed = create_timesheet(db, provider, client, status="emailed")
    draft = create_timesheet(db, provider, client, status="draft")
    billed = create_timesheet(db, provider, client)
    for entry in billed.entries:
        entry.billed = True
    supervisory = create_timesheet(db, provider, client, is_supervisory=True)
    db.commit()

    ids = [approved.id, emailed.id, draft.id, billed.id, supervisory.id]
    assert {ts.id for ts in select_eligible_timesheets(db, ids)} == {approved.id, emailed.id, supervisory.id}
    assert {ts.id for ts in select_eligible_timesheets(db, ids, standard_only=True)} == {approved.id, emailed.id}
    db.close()


def test_generate_creates_one_invoice_per_client_week():
    db = SessionLocal()
    provider_a = create_provider(db, name="Provider A")
    provider_b = create_provider(db, name="Provider B")
    client = _insured_client(db)
    first = create_timesheet(db, provider_a, client, entries=[(WEEK_ONE, "09:00", "10:30", "DR")])
    second = create_timesheet(
        db,
        provider_b,
        client,
        start_date=WEEK_ONE + timedelta(days=1),
        entries=[(WEEK_ONE + timedelta(days=1), "09:00", "10:00", "DR")],
    )

    result = generate_invoices(db, [first.id, second.id], actor_id=None)

    assert result.errors == []
    assert result.skipped == []
    assert len(result.created) == 1
    created = result.created[0]
    assert created.total_units == Decimal("10.00")
    assert created.total_amount == Decimal("200.00")
    assert created.entry_count == 2

    invoice = db.get(Invoice, created.invoice_id)
    assert invoice.start_date == WEEK_ONE
    assert invoice.end_date == date(2030, 1, 13)
    assert invoice.status == "draft"
    assert invoice.outstanding == Decimal("200.00")
    assert invoice.invoice_number.startswith(f"INV-{date.today().year}-")
    assert sorted(line.provider_id for line in invoice.entries) == sorted([provider_a.id, provider_b.id])

    for timesheet in db.query(Timesheet).all():
        assert timesheet.invoice_id == invoice.id
        assert timesheet.invoiced_at is not None
    assert all(entry.billed for entry in db.query(TimeEntry).all())
    assert db.query(AuditLog).filter(AuditLog.action == "CREATE", AuditLog.entity_type == "Invoice").count() == 1
    db.close()


def test_suppressed_supervision_line_shows_units_without_amount():
    db = SessionLocal()
    provider = create_provider(db)
    client = _insured_client(db)
    timesheet = create_timesheet(
        db,
        provider,
        client,
        entries=[(WEEK_ONE, "09:00", "10:00", "DR"), (WEEK_ONE, "10:00", "11:00", "SV")],
    )

    result = generate_invoices(db, [timesheet.id])

    created = result.created[0]
    assert created.total_amount == Decimal("80.00")
    assert created.total_units == Decimal("8.00")
    lines = db.query(InvoiceEntry).order_by(InvoiceEntry.time_entry_id).all()
    assert [(line.units, line.amount) for line in lines] == [
        (Decimal("4.00"), Decimal("80.00")),
        (Decimal("4.00"), Decimal("0.00")),
    ]
    db.close()


def test_supervisory_timesheet_bills_supervision_at_supervisory_rate():
    db = SessionLocal()
    provider = create_provider(db)
    client = _insured_client(db, supervisory_rate="30.00")
    timesheet = create_timesheet(db, provider, client, entries=[(WEEK_ONE, "09:00", "10:00", "SV")], is_supervisory=True)

    result = generate_invoices(db, [timesheet.id])

    assert result.created[0].total_amount == Decimal("120.00")
    db.close()


def test_second_run_is_skipped_and_bills_nothing_twice():
    db = SessionLocal()
    provider = create_provider(db)
    client = _insured_client(db)
    timesheet = create_timesheet(db, provider, client)

    first = generate_invoices(db, [timesheet.id])
    second = generate_invoices(db, [timesheet.id])

    assert len(first.created) == 1
    assert second.created == []
    assert db.query(Invoice).count() == 1
    assert db.query(InvoiceEntry).count() == 1
    db.close()


def test_new_timesheet_for_already_invoiced_week_is_skipped():
    db = SessionLocal()
    provider = create_provider(db)
    client = _insured_client(db)
    original = create_timesheet(db, provider, client)
    first = generate_invoices(db, [original.id])
    late = create_timesheet(
        db, provider, client, start_date=WEEK_ONE + timedelta(days=3),
        entries=[(WEEK_ONE + timedelta(days=3), "09:00", "10:00", "DR")],
    )

    result = generate_invoices(db, [late.id])

    assert result.created == []
    assert len(result.skipped) == 1
    skipped = result.skipped[0]
    assert skipped.invoice_number == first.created[0].invoice_number
    assert "already exists" in skipped.reason
    assert not any(entry.billed for entry in db.get(Timesheet, late.id).entries)
    db.close()


def test_missing_rate_fails_only_its_group():
    db = SessionLocal()
    provider = create_provider(db)
    uninsured = create_client(db, name="No Plan", insurance=None)
    insured = _insured_client(db, name="Has Plan")
    bad = create_timesheet(db, provider, uninsured)
    good = create_timesheet(db, provider, insured, entries=[(WEEK_ONE, "11:00", "12:00", "DR")])

    result = generate_invoices(db, [bad.id, good.id])

    assert len(result.created) == 1
    assert result.created[0].client_id == insured.id
    assert len(result.errors) == 1
    assert result.errors[0].client_id == uninsured.id
    assert result.errors[0].message.startswith("MISSING_INSURANCE_RATE")
    assert not any(entry.billed for entry in db.get(Timesheet, bad.id).entries)
    assert db.get(Timesheet, bad.id).invoice_id is None
    db.close()


def test_timesheet_insurance_override_wins_over_client_plan():
    db = SessionLocal()
    provider = create_provider(db)
    client = _insured_client(db, rate="20.00")
    override = create_insurance(db, name="Override", regular_rate="50.00")
    timesheet = create_timesheet(db, provider, client, insurance=override)

    result = generate_invoices(db, [timesheet.id])

    assert result.created[0].total_amount == Decimal("200.00")
    assert db.query(InvoiceEntry).one().insurance_id == override.id
    db.close()


def test_empty_selection_is_rejected():
    db = SessionLocal()
    with pytest.raises(ValidationError):
        generate_invoices(db, [])
    db.close()


def test_stale_group_cannot_bill_entries_a_concurrent_run_took():
    setup = SessionLocal()
    provider = create_provider(setup)
    client = _insured_client(setup)
    timesheet = create_timesheet(setup, provider, client)
    setup.close()

    stale = SessionLocal()
    groups = group_by_client_week(select_eligible_timesheets(stale, [timesheet.id]))
    assert len(groups) == 1

    winner = SessionLocal()
    assert len(generate_invoices(winner, [timesheet.id]).created) == 1
    winner.close()

    with pytest.raises(DuplicateInvoiceError):
        _create_group_invoice(stale, groups[0], actor_id=None)
    stale.rollback()

    assert stale.query(Invoice).count() == 1
    assert stale.query(InvoiceEntry).count() == 1
    stale.close()


def test_entries_billed_underneath_a_group_abort_it():
    setup = SessionLocal()
    provider = create_provider(setup)
    client = _insured_client(setup)
    timesheet = create_timesheet(
        setup, provider, client, entries=[(WEEK_ONE, "09:00", "10:00", "DR"), (WEEK_ONE, "10:00", "11:00", "DR")]
    )
    entry_id = timesheet.entries[0].id
    setup.close()

    stale = SessionLocal()
    groups = group_by_client_week(select_eligible_timesheets(stale, [timesheet.id]))

    other = SessionLocal()
    other.get(TimeEntry, entry_id).billed = True
    other.commit()
    other.close()

    with pytest.raises(DuplicateInvoiceError, match="already billed"):
        _create_group_invoice(stale, groups[0], actor_id=None)
    stale.rollback()
    assert stale.query(Invoice).count() == 0
    stale.close()


def test_find_overlapping_invoice_ignores_deleted():
    db = SessionLocal()
    provider = create_provider(db)
    client = _insured_client(db)
    timesheet = create_timesheet(db, provider, client)
    created = generate_invoices(db, [timesheet.id]).created[0]

    assert find_overlapping_invoice(db, client.id, WEEK_ONE, WEEK_ONE + timedelta(days=6)).id == created.invoice_id
    assert find_overlapping_invoice(db, client.id, WEEK_TWO, WEEK_TWO + timedelta(days=6)) is None

    invoice = db.get(Invoice, created.invoice_id)
    invoice.deleted_at = invoice.created_at
    db.commit()
    assert find_overlapping_invoice(db, client.id, WEEK_ONE, WEEK_ONE + timedelta(days=6)) is None
    db.close()


def test_concurrent_runs_for_same_timesheet_create_one_invoice():
    setup = SessionLocal()
    timesheet = create_timesheet(setup, create_provider(setup), _insured_client(setup))
    timesheet_id = timesheet.id
    setup.close()

    results = []
    errors = []
    barrier = threading.Barrier(5)

    def worker():
        db = SessionLocal()
        try:
            barrier.wait()
            results.append(generate_invoices(db, [timesheet_id]))
        except Exception as exc:  # surfaced by the assertion below
            errors.append(exc)
        finally:
            db.close()

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sum(len(result.created) for result in results) == 1
    # Later runs either skip the week or find nothing left to bill
    assert all(len(result.created) + len(result.skipped) <= 1 for result in results)
    assert [error for result in results for error in result.errors] == []

    db = SessionLocal()
    assert db.query(Invoice).count() == 1
    assert db.query(InvoiceEntry).count() == 1
    db.close()
