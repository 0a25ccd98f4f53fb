"""
Monetary Amount Module

Fixed-point Decimal handling for balances and transfer amounts.
NEVER uses float for monetary values.
"""

from decimal import Decimal, InvalidOperation as DecimalException, ROUND_HALF_UP, getcontext
from typing import Union

from .exceptions import InvalidAmount

# Set global decimal context for financial precision
getcontext().prec = 28

AMOUNT_PRECISION = 2
AMOUNT_QUANTUM = Decimal('0.1') ** AMOUNT_PRECISION

AmountLike = Union[Decimal, int, str]


def to_amount(value: AmountLike) -> Decimal:
    """
    Convert a value to an exact 2-digit Decimal amount

    Args:
        value: Decimal, int or numeric string

    Returns:
        Decimal quantized to AMOUNT_PRECISION

    Raises:
        InvalidAmount: For floats, non-numeric values, non-finite values or
            values with more fractional digits than AMOUNT_PRECISION or more
            integer digits than the decimal context can hold
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmount(f"Amount must be a Decimal, int or string, got {type(value).__name__}")

    if isinstance(value, str):
        value = value.strip()

    try:
        amount = Decimal(value)
    except (DecimalException, TypeError, ValueError):
        raise InvalidAmount(f"Cannot convert {value!r} to an amount")

    if not amount.is_finite():
        raise InvalidAmount(f"Amount must be finite, got {value!r}")

    try:
        quantized = amount.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
    except DecimalException:
        raise InvalidAmount(f"Amount {value} exceeds the supported magnitude")
    if quantized != amount:
        raise InvalidAmount(f"Amount {value} has more than {AMOUNT_PRECISION} decimal places")

    return quantized
