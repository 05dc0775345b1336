"""
Money and financial-year helpers.

Amounts are integers in the currency's minor unit. Every rounding in the
engine goes through round_minor() so recomputation stays deterministic.
"""

from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Optional, Union

from tariff_engine.core.config import EngineSettings, get_engine_settings

Number = Union[int, float, Decimal, str]

ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Number) -> Decimal:
    """Convert an int, Decimal or numeric string to Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr() keeps 2.5 as 2.5 rather than its binary expansion
        return Decimal(repr(value))
    return Decimal(value)


def round_minor(value: Number) -> int:
    """Round to whole minor units, half to even."""
    return int(to_decimal(value).quantize(ONE, rounding=ROUND_HALF_EVEN))


def percent_of(amount: int, percent: Decimal) -> int:
    """Apply a percentage (0-100) to an amount, rounded."""
    return round_minor(Decimal(amount) * percent / HUNDRED)


def clamp(value: int, lower: int, upper: Optional[int] = None) -> int:
    """Clamp value into [lower, upper]; no upper bound when upper is None."""
    if upper is not None and value > upper:
        value = upper
    return max(lower, value)


def financial_year_for(as_of: date, settings: Optional[EngineSettings] = None) -> int:
    """
    Financial year label containing a date.

    The year starts on the configured month/day; the configured offset maps the
    Gregorian start year onto the label used by the factor tables.
    """
    settings = settings or get_engine_settings()
    start = (settings.FINANCIAL_YEAR_START_MONTH, settings.FINANCIAL_YEAR_START_DAY)
    start_year = as_of.year if (as_of.month, as_of.day) >= start else as_of.year - 1
    return start_year + settings.FINANCIAL_YEAR_OFFSET
