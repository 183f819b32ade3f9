"""
Money Formatting

Integer cents are carried through every aggregation step; the single
division by 100 happens here, when a value crosses the output boundary.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

Number = Union[int, float]


def cents_to_units(cents: Optional[int]) -> Optional[float]:
    """Convert integer cents to currency units, preserving None."""
    if cents is None:
        return None
    return float(Decimal(int(cents)) / 100)


def round_half_up(value: Number, digits: int) -> Decimal:
    """Round the exact binary value half away from zero."""
    quantum = Decimal(1).scaleb(-digits)
    return Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)


def format_fixed(value: Number, digits: int = 1) -> str:
    """Fixed-point string with ``digits`` decimals, e.g. ``-50.0``."""
    return str(round_half_up(value, digits))


def safe_ratio(numerator: Number, denominator: Number) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator


def percentage(numerator: Number, denominator: Number, digits: int = 2) -> float:
    """``numerator / denominator * 100`` rounded to ``digits`` places, 0 on empty denominators."""
    return float(round_half_up(safe_ratio(numerator, denominator) * 100, digits))
