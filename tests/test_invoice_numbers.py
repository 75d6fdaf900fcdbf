import threading
from datetime import date

import pytest

from backend.app.db.base import Base
from backend.app.db.session import SessionLocal, engine
from backend.app.models.invoice import Invoice
from backend.app.models.sequence import Sequence
from backend.app.services.invoice_generation import generate_invoices
from backend.app.services.invoice_numbers import (
    INVOICE_SEQUENCE,
    allocate_invoice_number,
    format_invoice_number,
    next_sequence_value,
)
from tests.factories import WEEK_ONE, WEEK_TWO, create_client, create_insurance, create_provider, create_timesheet


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def test_format_pads_to_four_digits():
    assert format_invoice_number(7, year=2030) == "INV-2030-0007"
    assert format_invoice_number(12345, year=2030) == "INV-2030-12345"


def test_sequence_increments_across_sessions():
    first = SessionLocal()
    assert allocate_invoice_number(first, year=2030) == "INV-2030-0001"
    first.commit()
    first.close()

    second = SessionLocal()
    assert allocate_invoice_number(second, year=2030) == "INV-2030-0002"
    second.commit()
    assert second.get(Sequence, INVOICE_SEQUENCE).value == 2
    second.close()


def test_rolled_back_allocation_is_reused():
    db = SessionLocal()
    assert next_sequence_value(db) == 1
    db.rollback()
    assert next_sequence_value(db) == 1
    db.close()


def test_sequence_seeds_from_existing_invoice_count():
    db = SessionLocal()
    client = create_client(db, insurance=None)
    for number in ("INV-2029-0001", "INV-2029-0002"):
        db.add(Invoice(invoice_number=number, client_id=client.id, start_date=WEEK_ONE, end_date=WEEK_ONE))
    db.commit()

    assert next_sequence_value(db) == 3
    db.close()


def test_generated_invoices_get_unique_increasing_numbers():
    db = SessionLocal()
    provider = create_provider(db)
    insurance = create_insurance(db)
    clients = [create_client(db, name=f"Client {index}", insurance=insurance) for index in range(3)]
    timesheet_ids = []
    for client in clients:
        timesheet_ids.append(create_timesheet(db, provider, client).id)
        timesheet_ids.append(
            create_timesheet(db, provider, client, start_date=WEEK_TWO, entries=[(WEEK_TWO, "09:00", "10:00", "DR")]).id
        )

    result = generate_invoices(db, timesheet_ids)

    numbers = [created.invoice_number for created in result.created]
    year = date.today().year
    assert numbers == [f"INV-{year}-{index:04d}" for index in range(1, 7)]
    assert len(set(numbers)) == 6
    db.close()


def test_number_collision_retries_with_next_value():
    db = SessionLocal()
    provider = create_provider(db)
    insurance = create_insurance(db)
    client = create_client(db, insurance=insurance)
    other = create_client(db, name="Other", insurance=insurance)
    year = date.today().year
    # A row written outside the counter occupies the next number
    db.add(Invoice(invoice_number=f"INV-{year}-0002", client_id=other.id, start_date=WEEK_TWO, end_date=WEEK_TWO))
    db.commit()
    timesheet = create_timesheet(db, provider, client)

    result = generate_invoices(db, [timesheet.id])

    assert result.errors == []
    assert result.created[0].invoice_number == f"INV-{year}-0003"
    db.close()


def test_concurrent_generation_hands_out_unique_numbers():
    setup = SessionLocal()
    provider = create_provider(setup)
    insurance = create_insurance(setup)
    timesheet_ids = [
        create_timesheet(setup, provider, create_client(setup, name=f"Client {index}", insurance=insurance)).id
        for index in range(6)
    ]
    setup.close()

    numbers = []
    errors = []
    barrier = threading.Barrier(len(timesheet_ids))

    def worker(timesheet_id):
        db = SessionLocal()
        try:
            barrier.wait()
            result = generate_invoices(db, [timesheet_id])
            errors.extend(result.errors)
            numbers.extend(created.invoice_number for created in result.created)
        except Exception as exc:  # surfaced by the assertion below
            errors.append(exc)
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(timesheet_id,)) for timesheet_id in timesheet_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    year = date.today().year
    assert sorted(numbers) == [f"INV-{year}-{index:04d}" for index in range(1, 7)]

    db = SessionLocal()
    assert db.get(Sequence, INVOICE_SEQUENCE).value == 6
    db.close()
