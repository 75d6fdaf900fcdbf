"""Timesheet creation, editing and approval.

Entries are validated and checked for double-booking before anything is
written; approval hands the timesheet to the delivery queue.
"""

import logging
import re
from datetime import date, time
from typing import Any, Iterable

from sqlalchemy.orm import Session

from backend.app.core.errors import OverlapConflictError, ValidationError
from backend.app.core.time import minutes_between, utc_now
from backend.app.models.client import Client
from backend.app.models.insurance import Insurance
from backend.app.models.provider import Provider
from backend.app.models.queue_item import ENTITY_TIMESHEET, QueueItem
from backend.app.models.time_entry import SERVICE_TAG_DIRECT, SERVICE_TAG_SUPERVISION, TimeEntry
from backend.app.models.timesheet import Timesheet
from backend.app.services.audit import record_audit
from backend.app.services.delivery_queue import enqueue
from backend.app.services.overlap import CandidateEntry, check_overlaps

logger = logging.getLogger(__name__)

CLOCK_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
MINUTES_TOLERANCE = 1
SERVICE_TAGS = (SERVICE_TAG_DIRECT, SERVICE_TAG_SUPERVISION)
EDITABLE_STATUSES = ("draft", "submitted", "rejected")
APPROVABLE_STATUSES = ("draft", "submitted")
REJECTABLE_STATUSES = ("draft", "submitted")


def parse_clock(value: Any) -> time:
    """Accept ``HH:MM`` strings or ``time`` objects."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    match = CLOCK_PATTERN.match(str(value or "").strip())
    if not match:
        raise ValidationError(f"Invalid time format: {value!r} (expected HH:MM)")
    return time(int(match.group(1)), int(match.group(2)))


def _field(entry: Any, name: str):
    if isinstance(entry, dict):
        return entry.get(name)
    return getattr(entry, name, None)


def validate_entry(entry: Any) -> tuple[CandidateEntry, int]:
    """Normalize one raw entry and return it with its verified minute count."""
    entry_date = _field(entry, "entry_date")
    if not isinstance(entry_date, date):
        raise ValidationError("Each entry needs an entry_date")
    start = parse_clock(_field(entry, "start_time"))
    end = parse_clock(_field(entry, "end_time"))
    span = minutes_between(start, end)
    if span <= 0:
        raise ValidationError(f"Entry on {entry_date}: end time {end:%H:%M} must be after start time {start:%H:%M}")

    minutes = _field(entry, "minutes")
    if minutes is None:
        minutes = span
    elif abs(int(minutes) - span) > MINUTES_TOLERANCE:
        raise ValidationError(
            f"Entry on {entry_date}: minutes ({minutes}) do not match {start:%H:%M}-{end:%H:%M} ({span})"
        )

    tag = _field(entry, "service_tag")
    if tag is not None:
        tag = str(tag).strip().upper() or None
    if tag is not None and tag not in SERVICE_TAGS:
        raise ValidationError(f"Unknown service tag: {tag}")

    return CandidateEntry(entry_date=entry_date, start_time=start, end_time=end, service_tag=tag), int(minutes)


def validate_entries(entries: Iterable[Any], start_date: date, end_date: date) -> list[tuple[CandidateEntry, int]]:
    validated = []
    for raw in entries:
        candidate, minutes = validate_entry(raw)
        if not start_date <= candidate.entry_date <= end_date:
            raise ValidationError(f"Entry date {candidate.entry_date} is outside {start_date} to {end_date}")
        validated.append((candidate, minutes))
    return validated


def _require_live(db: Session, model, entity_id: int | None, label: str):
    if entity_id is None:
        return None
    entity = db.get(model, entity_id)
    if entity is None or entity.deleted_at is not None:
        raise ValidationError(f"{label} {entity_id} not found")
    return entity


def _raise_on_overlaps(
    db: Session,
    provider_id: int,
    client_id: int,
    validated: list[tuple[CandidateEntry, int]],
    is_supervisory: bool,
    exclude_timesheet_id: int | None = None,
) -> None:
    conflicts = check_overlaps(
        db,
        provider_id,
        client_id,
        [candidate for candidate, _ in validated],
        exclude_timesheet_id=exclude_timesheet_id,
        is_supervisory=is_supervisory,
    )
    if conflicts:
        raise OverlapConflictError(conflicts)


def _replace_entries(timesheet: Timesheet, validated: list[tuple[CandidateEntry, int]]) -> None:
    timesheet.entries.clear()
    for candidate, minutes in validated:
        timesheet.entries.append(
            TimeEntry(
                entry_date=candidate.entry_date,
                start_time=candidate.start_time,
                end_time=candidate.end_time,
                minutes=minutes,
                service_tag=candidate.service_tag,
                billed=False,
            )
        )


def create_timesheet(db: Session, payload: Any, actor_id: int | None = None) -> Timesheet:
    _require_live(db, Provider, payload.provider_id, "Provider")
    _require_live(db, Client, payload.client_id, "Client")
    _require_live(db, Insurance, payload.insurance_id, "Insurance")
    if payload.end_date < payload.start_date:
        raise ValidationError("end_date must not be before start_date")

    validated = validate_entries(payload.entries, payload.start_date, payload.end_date)
    _raise_on_overlaps(db, payload.provider_id, payload.client_id, validated, payload.is_supervisory)

    timesheet = Timesheet(
        provider_id=payload.provider_id,
        client_id=payload.client_id,
        insurance_id=payload.insurance_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        is_supervisory=payload.is_supervisory,
        status="draft",
        created_by=actor_id,
    )
    _replace_entries(timesheet, validated)
    db.add(timesheet)
    db.flush()
    record_audit(db, "CREATE", "Timesheet", timesheet.id, actor_id, {"entries": len(validated)})
    db.commit()
    db.refresh(timesheet)
    return timesheet


def update_timesheet(db: Session, timesheet: Timesheet, payload: Any, actor_id: int | None = None) -> Timesheet:
    """Apply the fields set on ``payload``; a new ``entries`` list replaces the old one."""
    if timesheet.status not in EDITABLE_STATUSES or timesheet.invoice_id is not None:
        raise ValidationError(f"Timesheet {timesheet.id} can no longer be edited (status {timesheet.status})")

    changes = payload.model_dump(exclude_unset=True)
    if changes.get("insurance_id") is not None:
        _require_live(db, Insurance, changes["insurance_id"], "Insurance")

    start_date = changes.get("start_date") or timesheet.start_date
    end_date = changes.get("end_date") or timesheet.end_date
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date")
    is_supervisory = timesheet.is_supervisory if changes.get("is_supervisory") is None else changes["is_supervisory"]

    if payload.entries is not None:
        validated = validate_entries(payload.entries, start_date, end_date)
    else:
        validated = validate_entries(timesheet.entries, start_date, end_date)
    _raise_on_overlaps(
        db,
        timesheet.provider_id,
        timesheet.client_id,
        validated,
        is_supervisory,
        exclude_timesheet_id=timesheet.id,
    )

    timesheet.start_date = start_date
    timesheet.end_date = end_date
    timesheet.is_supervisory = is_supervisory
    if timesheet.status == "rejected":
        timesheet.status = "draft"
        timesheet.rejection_reason = None
    if "insurance_id" in changes:
        timesheet.insurance_id = changes["insurance_id"]
    if payload.entries is not None:
        _replace_entries(timesheet, validated)

    record_audit(db, "UPDATE", "Timesheet", timesheet.id, actor_id, {"fields": sorted(changes)})
    db.commit()
    db.refresh(timesheet)
    return timesheet


def approve_timesheet(db: Session, timesheet: Timesheet, actor_id: int | None = None) -> QueueItem:
    if timesheet.deleted_at is not None:
        raise ValidationError("Cannot approve a deleted timesheet")
    if timesheet.status not in APPROVABLE_STATUSES:
        raise ValidationError(f"Only draft or submitted timesheets can be approved (timesheet is {timesheet.status})")
    if not timesheet.entries:
        raise ValidationError("Cannot approve a timesheet without entries")

    timesheet.status = "approved"
    provider = timesheet.provider
    client = timesheet.client
    subject = f"Timesheet {timesheet.start_date:%Y-%m-%d} to {timesheet.end_date:%Y-%m-%d}"
    if provider is not None and client is not None:
        subject = f"{subject}: {provider.name} / {client.name}"
    item = enqueue(db, ENTITY_TIMESHEET, timesheet.id, actor_id=actor_id, subject=subject)
    record_audit(db, "APPROVE", "Timesheet", timesheet.id, actor_id)
    db.commit()
    db.refresh(timesheet)
    db.refresh(item)
    logger.info("Timesheet %s approved and queued as item %s", timesheet.id, item.id)
    return item


def submit_timesheet(db: Session, timesheet: Timesheet, actor_id: int | None = None) -> Timesheet:
    """Hand a draft to reviewers; it stays editable until approved or rejected."""
    if timesheet.deleted_at is not None:
        raise ValidationError("Cannot submit a deleted timesheet")
    if timesheet.status != "draft":
        raise ValidationError(f"Only draft timesheets can be submitted (timesheet is {timesheet.status})")
    if not timesheet.entries:
        raise ValidationError("Cannot submit a timesheet without entries")

    timesheet.status = "submitted"
    timesheet.submitted_at = utc_now()
    record_audit(db, "SUBMIT", "Timesheet", timesheet.id, actor_id)
    db.commit()
    db.refresh(timesheet)
    logger.info("Timesheet %s submitted for review", timesheet.id)
    return timesheet


def reject_timesheet(db: Session, timesheet: Timesheet, reason: str, actor_id: int | None = None) -> Timesheet:
    """Send a timesheet back with a reason; nothing is queued for delivery."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")
    if timesheet.deleted_at is not None:
        raise ValidationError("Cannot reject a deleted timesheet")
    if timesheet.status not in REJECTABLE_STATUSES:
        raise ValidationError(f"Only draft or submitted timesheets can be rejected (timesheet is {timesheet.status})")

    timesheet.status = "rejected"
    timesheet.rejection_reason = reason[:500]
    record_audit(db, "REJECT", "Timesheet", timesheet.id, actor_id, {"reason": timesheet.rejection_reason})
    db.commit()
    db.refresh(timesheet)
    logger.info("Timesheet %s rejected", timesheet.id)
    return timesheet
