"""Rate resolution for payer records."""

from decimal import Decimal

from backend.app.core.errors import MissingRateError
from backend.app.core.settings import get_settings
from backend.app.models.insurance import Insurance


def _as_decimal(value) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


def resolve_rate(insurance: Insurance | None, is_supervisory: bool) -> tuple[Decimal, int]:
    """Return ``(rate_per_unit, minutes_per_unit)`` for the payer and program.

    Program-specific fields win; the legacy ``rate_per_unit`` is the fallback.
    Raises ``MissingRateError`` when no positive rate can be found.
    """
    if insurance is None or insurance.deleted_at is not None:
        raise MissingRateError("No insurance assigned")

    if is_supervisory:
        program_rate = insurance.supervisory_rate_per_unit
        unit_minutes = insurance.supervisory_unit_minutes
    else:
        program_rate = insurance.regular_rate_per_unit
        unit_minutes = insurance.regular_unit_minutes

    rate = _as_decimal(program_rate)
    if rate is None:
        rate = _as_decimal(insurance.rate_per_unit)
    if rate is None or rate <= 0:
        program = "supervisory" if is_supervisory else "regular"
        raise MissingRateError(f"Insurance '{insurance.name}' has no valid {program} rate per unit")

    return rate, int(unit_minutes or get_settings().default_unit_minutes)
