"""Currency rounding shared by every calculation stage.

All rounding in the engine goes through this module so that cross-checks
(schedule principal vs. loan principal, breakdown vs. totals) agree.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

ZERO = Decimal("0")
HUNDRED = Decimal("100")

WHOLE_UNIT = Decimal("1")
CENT = Decimal("0.01")
RATIO = Decimal("0.000001")


def to_decimal(value: Any) -> Decimal:
    """Coerce a JSON/ORM number to Decimal (None becomes zero)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_currency(amount: Decimal) -> Decimal:
    """Round to whole currency units, half away from zero."""
    return to_decimal(amount).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


def round_cents(amount: Decimal) -> Decimal:
    """Round to 2 decimal places for persisted aggregates."""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(base: Decimal, rate_percent: Decimal) -> Decimal:
    """Return ``rate_percent``% of ``base`` without rounding."""
    return to_decimal(base) * to_decimal(rate_percent) / HUNDRED


def round_ratio(value: Decimal) -> Decimal:
    """Round a ratio (pro-rata factor) to 6 decimal places."""
    return to_decimal(value).quantize(RATIO, rounding=ROUND_HALF_UP)
