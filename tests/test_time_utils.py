from datetime import UTC, date, datetime, time

from backend.app.core.time import minutes_between, utc_now, week_end, week_start


def test_utc_now_is_timezone_aware_utc():
    value = utc_now()
    assert value.tzinfo is UTC


def test_week_runs_monday_to_sunday():
    # 2030-01-13 is a Sunday
    assert week_start(date(2030, 1, 13)) == date(2030, 1, 7)
    assert week_start(date(2030, 1, 7)) == date(2030, 1, 7)
    assert week_start(date(2030, 1, 14)) == date(2030, 1, 14)
    assert week_end(date(2030, 1, 9)) == date(2030, 1, 13)


def test_week_start_accepts_datetimes():
    assert week_start(datetime(2030, 1, 10, 23, 30)) == date(2030, 1, 7)


def test_minutes_between():
    assert minutes_between(time(9, 0), time(10, 30)) == 90
    assert minutes_between(time(10, 0), time(9, 0)) == -60
