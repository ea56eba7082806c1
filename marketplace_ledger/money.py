"""
Money handling

All amounts are Decimal. Floats are refused at the boundary because they
cannot represent most decimal fractions exactly.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Any

from .errors import ValidationError

# High precision for intermediate results; rounding happens explicitly
getcontext().prec = 28

ZERO = Decimal("0")


def to_amount(value: Any, field: str = "amount") -> Decimal:
    """Coerce an int, str or Decimal to a finite Decimal"""
    if value is None:
        return ZERO
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be a Decimal, int or numeric string, not {type(value).__name__}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} is not a valid number: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite")
    return amount


def quantize(amount: Decimal, places: int) -> Decimal:
    return amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate: Decimal, places: int) -> Decimal:
    """rate is a percentage: percent_of(1000, 10, 2) == 100.00"""
    return quantize(amount * rate / Decimal(100), places)
