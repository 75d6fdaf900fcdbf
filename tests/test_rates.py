from decimal import Decimal

import pytest

from backend.app.core.errors import MissingRateError
from backend.app.core.time import utc_now
from backend.app.models.insurance import Insurance
from backend.app.services.rates import resolve_rate


def _insurance(**kwargs):
    kwargs.setdefault("name", "Acme Health")
    return Insurance(**kwargs)


def test_regular_rate_wins_over_legacy():
    insurance = _insurance(regular_rate_per_unit=Decimal("20.00"), rate_per_unit=Decimal("12.00"))
    assert resolve_rate(insurance, is_supervisory=False) == (Decimal("20.00"), 15)


def test_supervisory_rate_and_unit_minutes():
    insurance = _insurance(
        regular_rate_per_unit=Decimal("20.00"),
        supervisory_rate_per_unit=Decimal("35.50"),
        supervisory_unit_minutes=30,
    )
    assert resolve_rate(insurance, is_supervisory=True) == (Decimal("35.50"), 30)


def test_falls_back_to_legacy_rate():
    insurance = _insurance(rate_per_unit=Decimal("12.00"))
    assert resolve_rate(insurance, is_supervisory=True)[0] == Decimal("12.00")
    assert resolve_rate(insurance, is_supervisory=False)[0] == Decimal("12.00")


def test_missing_insurance_raises():
    with pytest.raises(MissingRateError):
        resolve_rate(None, is_supervisory=False)


def test_deleted_insurance_raises():
    insurance = _insurance(regular_rate_per_unit=Decimal("20.00"), deleted_at=utc_now())
    with pytest.raises(MissingRateError):
        resolve_rate(insurance, is_supervisory=False)


@pytest.mark.parametrize("rate", [None, Decimal("0"), Decimal("-5.00")])
def test_non_positive_or_missing_rate_raises(rate):
    insurance = _insurance(regular_rate_per_unit=rate)
    with pytest.raises(MissingRateError) as excinfo:
        resolve_rate(insurance, is_supervisory=False)
    assert "regular" in str(excinfo.value)
