"""Versioned schema migrations applied at startup.

Each migration runs once, in order, and is recorded in ``schema_migrations``.
New columns ship as a new entry appended here before any code reads them.
"""

import logging

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, insert, inspect, select, text
from sqlalchemy.engine import Connection, Engine

from backend.app.core.time import utc_now
from backend.app.db.base import Base

logger = logging.getLogger(__name__)

_migration_metadata = MetaData()

schema_migrations = Table(
    "schema_migrations",
    _migration_metadata,
    Column("version", Integer, primary_key=True),
    Column("name", String(100), nullable=False),
    Column("applied_at", DateTime(timezone=True), nullable=False),
)


def _baseline(connection: Connection) -> None:
    Base.metadata.create_all(bind=connection)


def _queue_stuck_index(connection: Connection) -> None:
    connection.execute(
        text("CREATE INDEX IF NOT EXISTS ix_queue_items_status_claimed_at ON queue_items (status, claimed_at)")
    )


def _seed_invoice_sequence(connection: Connection) -> None:
    # Continue numbering after invoices created by count-based allocation
    connection.execute(
        text(
            "INSERT INTO sequences (name, value) "
            "SELECT 'invoice_number', COUNT(*) FROM invoices "
            "WHERE NOT EXISTS (SELECT 1 FROM sequences WHERE name = 'invoice_number')"
        )
    )


def _timesheet_review_columns(connection: Connection) -> None:
    existing = {column["name"] for column in inspect(connection).get_columns("timesheets")}
    if "submitted_at" not in existing:
        connection.execute(text("ALTER TABLE timesheets ADD COLUMN submitted_at TIMESTAMP"))
    if "rejection_reason" not in existing:
        connection.execute(text("ALTER TABLE timesheets ADD COLUMN rejection_reason VARCHAR(500)"))


MIGRATIONS = [
    (1, "baseline", _baseline),
    (2, "queue_stuck_index", _queue_stuck_index),
    (3, "seed_invoice_sequence", _seed_invoice_sequence),
    (4, "timesheet_review_columns", _timesheet_review_columns),
]


def applied_versions(connection: Connection) -> set[int]:
    return set(connection.execute(select(schema_migrations.c.version)).scalars())


def run_migrations(engine: Engine) -> list[int]:
    """Apply pending migrations; return the versions applied by this call."""
    applied: list[int] = []
    with engine.begin() as connection:
        _migration_metadata.create_all(bind=connection)
        done = applied_versions(connection)
    for version, name, migrate in MIGRATIONS:
        if version in done:
            continue
        with engine.begin() as connection:
            migrate(connection)
            connection.execute(insert(schema_migrations).values(version=version, name=name, applied_at=utc_now()))
        logger.info("Applied migration %s (%s)", version, name)
        applied.append(version)
    return applied
