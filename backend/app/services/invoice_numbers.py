"""Collision-free sequential invoice numbers (``INV-<year>-<NNNN>``)."""

from datetime import date

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.models.invoice import Invoice
from backend.app.models.sequence import Sequence

INVOICE_SEQUENCE = "invoice_number"


def format_invoice_number(sequence_value: int, year: int | None = None) -> str:
    return f"INV-{year or date.today().year}-{sequence_value:04d}"


def _ensure_sequence_row(db: Session, name: str) -> None:
    if db.get(Sequence, name) is not None:
        return
    start = db.query(func.count(Invoice.id)).scalar() or 0
    try:
        with db.begin_nested():
            db.add(Sequence(name=name, value=start))
    except IntegrityError:
        # Another writer created the row first; its value is authoritative
        pass


def next_sequence_value(db: Session, name: str = INVOICE_SEQUENCE) -> int:
    """Atomically increment and return the named counter within the current transaction.

    The UPDATE takes the row write lock, so concurrent allocators serialize here
    until the surrounding transaction ends.
    """
    _ensure_sequence_row(db, name)
    db.execute(
        update(Sequence).where(Sequence.name == name).values(value=Sequence.value + 1),
        execution_options={"synchronize_session": False},
    )
    value = db.query(Sequence.value).filter(Sequence.name == name).scalar()
    return int(value)


def allocate_invoice_number(db: Session, year: int | None = None) -> str:
    return format_invoice_number(next_sequence_value(db), year=year)
