"""
Money helpers

All amounts are Decimal; balances keep two fraction digits.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from core.constants import AMOUNT_QUANT


def to_decimal(value: str | int | float | Decimal) -> Decimal:
    """Convert to Decimal

    floats go through str() so 0.1 stays 0.1.

    Raises:
        ValueError: not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"Not a number: {value!r}") from e

    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def quantize_amount(value: Decimal) -> Decimal:
    """Round to two places, half-up"""
    return value.quantize(AMOUNT_QUANT, rounding=ROUND_HALF_UP)


def format_amount(value: Decimal) -> str:
    """Fixed two-digit string used in storage and API responses"""
    return str(quantize_amount(value))
