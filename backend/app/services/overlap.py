"""Double-booking detection for standard timesheet entries.

Two ranges overlap when ``startA < endB and startB < endA``; an entry ending
exactly when another begins is allowed. Supervisory-program timesheets are
exempt on both sides of the comparison.
"""

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from backend.app.core.time import minutes_of_day
from backend.app.models.time_entry import TimeEntry
from backend.app.models.timesheet import Timesheet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateEntry:
    entry_date: date
    start_time: time
    end_time: time
    service_tag: str | None = None


@dataclass(frozen=True)
class OverlapConflict:
    entry_date: date
    start_time: time
    end_time: time
    service_tag: str | None
    scope: str
    message: str
    conflicting_timesheet_id: int | None = None
    conflicting_entry_id: int | None = None
    conflicting_start_time: time | None = None
    conflicting_end_time: time | None = None
    conflicting_service_tag: str | None = None


def ranges_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    return start_a < end_b and start_b < end_a


def _entry_label(tag: str | None, start: time, end: time) -> str:
    return f"{tag or 'entry'} {start:%H:%M}-{end:%H:%M}"


def find_internal_overlaps(entries: Sequence[CandidateEntry]) -> list[OverlapConflict]:
    conflicts = []
    for index, first in enumerate(entries):
        for second in entries[index + 1 :]:
            if first.entry_date != second.entry_date:
                continue
            if not ranges_overlap(
                minutes_of_day(first.start_time),
                minutes_of_day(first.end_time),
                minutes_of_day(second.start_time),
                minutes_of_day(second.end_time),
            ):
                continue
            conflicts.append(
                OverlapConflict(
                    entry_date=first.entry_date,
                    start_time=first.start_time,
                    end_time=first.end_time,
                    service_tag=first.service_tag,
                    scope="internal",
                    conflicting_start_time=second.start_time,
                    conflicting_end_time=second.end_time,
                    conflicting_service_tag=second.service_tag,
                    message=(
                        f"Overlap detected on {first.entry_date:%Y-%m-%d}: "
                        f"{_entry_label(first.service_tag, first.start_time, first.end_time)} overlaps with "
                        f"{_entry_label(second.service_tag, second.start_time, second.end_time)} in this timesheet."
                    ),
                )
            )
    return conflicts


def _existing_entries(
    db: Session, provider_id: int, client_id: int, dates: Iterable[date], exclude_timesheet_id: int | None
) -> list[TimeEntry]:
    query = (
        db.query(TimeEntry)
        .join(Timesheet, TimeEntry.timesheet_id == Timesheet.id)
        .options(joinedload(TimeEntry.timesheet))
        .filter(
            TimeEntry.entry_date.in_(list(dates)),
            Timesheet.deleted_at.is_(None),
            Timesheet.is_supervisory.is_(False),
            or_(Timesheet.provider_id == provider_id, Timesheet.client_id == client_id),
        )
    )
    if exclude_timesheet_id is not None:
        query = query.filter(Timesheet.id != exclude_timesheet_id)
    return query.order_by(TimeEntry.entry_date, TimeEntry.start_time).all()


def _scope_message(scope: str, candidate: CandidateEntry, existing: TimeEntry) -> str:
    day = f"{candidate.entry_date:%Y-%m-%d}"
    existing_range = f"{existing.start_time:%H:%M}-{existing.end_time:%H:%M}"
    if scope == "both":
        return (
            f"Overlap detected on {day}: "
            f"{_entry_label(candidate.service_tag, candidate.start_time, candidate.end_time)} overlaps with existing "
            f"{_entry_label(existing.service_tag, existing.start_time, existing.end_time)} "
            "for the same provider and client."
        )
    if scope == "provider":
        return f"Overlap detected on {day}: provider already scheduled {existing_range}."
    return f"Overlap detected on {day}: client already scheduled {existing_range}."


def check_overlaps(
    db: Session,
    provider_id: int,
    client_id: int,
    entries: Sequence[CandidateEntry],
    exclude_timesheet_id: int | None = None,
    is_supervisory: bool = False,
) -> list[OverlapConflict]:
    """Report every collision of ``entries`` with each other and with stored standard entries."""
    if is_supervisory or not entries:
        return []

    conflicts = find_internal_overlaps(entries)
    existing = _existing_entries(db, provider_id, client_id, {e.entry_date for e in entries}, exclude_timesheet_id)

    for candidate in entries:
        start = minutes_of_day(candidate.start_time)
        end = minutes_of_day(candidate.end_time)
        for other in existing:
            if other.entry_date != candidate.entry_date:
                continue
            if not ranges_overlap(start, end, minutes_of_day(other.start_time), minutes_of_day(other.end_time)):
                continue
            provider_match = other.timesheet.provider_id == provider_id
            client_match = other.timesheet.client_id == client_id
            if provider_match and client_match:
                scope = "both"
            elif provider_match:
                scope = "provider"
            else:
                scope = "client"
            conflicts.append(
                OverlapConflict(
                    entry_date=candidate.entry_date,
                    start_time=candidate.start_time,
                    end_time=candidate.end_time,
                    service_tag=candidate.service_tag,
                    scope=scope,
                    conflicting_timesheet_id=other.timesheet_id,
                    conflicting_entry_id=other.id,
                    conflicting_start_time=other.start_time,
                    conflicting_end_time=other.end_time,
                    conflicting_service_tag=other.service_tag,
                    message=_scope_message(scope, candidate, other),
                )
            )

    if conflicts:
        logger.info(
            "Overlap check for provider %s / client %s found %s conflict(s)", provider_id, client_id, len(conflicts)
        )
    return conflicts
