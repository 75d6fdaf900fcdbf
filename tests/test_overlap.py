from datetime import time, timedelta

import pytest

from backend.app.core.time import utc_now
from backend.app.db.base import Base
from backend.app.db.session import SessionLocal, engine
from backend.app.services.overlap import CandidateEntry, check_overlaps, find_internal_overlaps, ranges_overlap
from tests.factories import WEEK_ONE, create_client, create_provider, create_timesheet


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def _candidate(start, end, day=WEEK_ONE, tag="DR"):
    return CandidateEntry(
        entry_date=day,
        start_time=time(*map(int, start.split(":"))),
        end_time=time(*map(int, end.split(":"))),
        service_tag=tag,
    )


def test_ranges_overlap_is_exclusive_at_the_edges():
    assert ranges_overlap(540, 600, 570, 630)
    assert ranges_overlap(540, 660, 570, 600)
    assert not ranges_overlap(540, 600, 600, 660)
    assert not ranges_overlap(600, 660, 540, 600)


def test_internal_overlap_between_candidates():
    conflicts = find_internal_overlaps([_candidate("09:00", "10:00"), _candidate("09:30", "10:30")])
    assert len(conflicts) == 1
    assert conflicts[0].scope == "internal"
    assert "in this timesheet" in conflicts[0].message


def test_candidates_on_different_days_do_not_conflict():
    entries = [_candidate("09:00", "10:00"), _candidate("09:00", "10:00", day=WEEK_ONE + timedelta(days=1))]
    assert find_internal_overlaps(entries) == []


def test_same_provider_conflict_against_stored_timesheet():
    db = SessionLocal()
    provider = create_provider(db)
    client = create_client(db)
    other_client = create_client(db, name="Other Client")
    existing = create_timesheet(db, provider, other_client, entries=[(WEEK_ONE, "09:00", "10:00", "DR")])

    conflicts = check_overlaps(db, provider.id, client.id, [_candidate("09:30", "10:30")])

    assert len(conflicts) == 1
    assert conflicts[0].scope == "provider"
    assert conflicts[0].conflicting_timesheet_id == existing.id
    assert conflicts[0].conflicting_start_time == time(9, 0)
    db.close()


def test_same_provider_and_client_conflict_is_reported_as_both():
    db = SessionLocal()
    provider = create_provider(db)
    client = create_client(db)
    create_timesheet(db, provider, client, entries=[(WEEK_ONE, "09:00", "10:00", "DR")])

    conflicts = check_overlaps(db, provider.id, client.id, [_candidate("09:15", "09:45")])

    assert [c.scope for c in conflicts] == ["both"]
    assert "same provider and client" in conflicts[0].message
    db.close()


def test_client_conflict_with_another_provider():
    db = SessionLocal()
    provider = create_provider(db)
    other_provider = create_provider(db, name="Other Provider")
    client = create_client(db)
    create_timesheet(db, other_provider, client, entries=[(WEEK_ONE, "09:00", "10:00", "DR")])

    conflicts = check_overlaps(db, provider.id, client.id, [_candidate("09:30", "10:30")])

    assert [c.scope for c in conflicts] == ["client"]
    db.close()


def test_touching_ranges_are_allowed():
    db = SessionLocal()
    provider = create_provider(db)
    client = create_client(db)
    create_timesheet(db, provider, client, entries=[(WEEK_ONE, "09:00", "10:00", "DR")])

    assert check_overlaps(db, provider.id, client.id, [_candidate("10:00", "11:00")]) == []
    db.close()


def test_supervisory_timesheets_are_exempt_both_ways():
    db = SessionLocal()
    provider = create_provider(db)
    client = create_client(db)
    create_timesheet(db, provider, client, entries=[(WEEK_ONE, "09:00", "10:00", "SV")], is_supervisory=True)

    assert check_overlaps(db, provider.id, client.id, [_candidate("09:00", "10:00")]) == []

    create_timesheet(db, provider, client, entries=[(WEEK_ONE, "13:00", "14:00", "DR")])
    candidates = [_candidate("13:00", "14:00", tag="SV")]
    assert check_overlaps(db, provider.id, client.id, candidates, is_supervisory=True) == []
    db.close()


def test_excluded_and_deleted_timesheets_are_ignored():
    db = SessionLocal()
    provider = create_provider(db)
    client = create_client(db)
    editing = create_timesheet(db, provider, client, entries=[(WEEK_ONE, "09:00", "10:00", "DR")])
    deleted = create_timesheet(db, provider, client, entries=[(WEEK_ONE, "11:00", "12:00", "DR")])
    deleted.deleted_at = utc_now()
    db.commit()

    candidates = [_candidate("09:00", "10:00"), _candidate("11:00", "12:00")]
    assert check_overlaps(db, provider.id, client.id, candidates, exclude_timesheet_id=editing.id) == []
    db.close()


def test_every_conflict_is_reported():
    db = SessionLocal()
    provider = create_provider(db)
    client = create_client(db)
    create_timesheet(
        db,
        provider,
        client,
        entries=[(WEEK_ONE, "09:00", "10:00", "DR"), (WEEK_ONE, "14:00", "15:00", "DR")],
    )

    candidates = [_candidate("09:30", "10:30"), _candidate("14:30", "15:30"), _candidate("10:00", "10:45")]
    conflicts = check_overlaps(db, provider.id, client.id, candidates)

    # two against stored entries, one between the first and third candidate
    assert sorted(c.scope for c in conflicts) == ["both", "both", "internal"]
    db.close()
