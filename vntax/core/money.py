"""
Decimal helpers for dong amounts

Filed tax amounts are compared to the dong, so every amount flows through
Decimal and is rounded half-up to whole dong at the reporting boundary.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Convert int/str/Decimal (or float via its repr) to Decimal"""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("boolean is not an amount")
    try:
        if isinstance(value, float):
            return Decimal(repr(value))
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Not a decimal amount: {value!r}") from e


def round_vnd(amount: Decimal) -> Decimal:
    """Round to whole dong, half-up"""
    return amount.quantize(ONE, rounding=ROUND_HALF_UP)


def percent(rate: Decimal) -> Decimal:
    """Percent figure (e.g. 20) to a fraction (0.2)"""
    return rate / HUNDRED


def format_vnd(amount: Decimal) -> str:
    """25000000 -> '25,000,000'"""
    return f"{round_vnd(amount):,.0f}"
