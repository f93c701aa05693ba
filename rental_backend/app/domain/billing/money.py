"""
Money and percentage arithmetic.

All amounts are Decimal and leave the engine with exactly two decimal places.
"""

from decimal import Decimal, ROUND_HALF_UP, ROUND_FLOOR

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    """Coerce ints, floats and strings to Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    return Decimal(str(value))


def round2(value) -> Decimal:
    """Round half-up to cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round0(value) -> Decimal:
    """Round half-up to a whole unit, kept at two decimals for storage."""
    return to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP).quantize(CENT)


def quantum(decimals: int) -> Decimal:
    return Decimal(1).scaleb(-decimals)


def floor_to(value, decimals: int) -> Decimal:
    """Floor a percentage at the given number of decimals."""
    return to_decimal(value).quantize(quantum(decimals), rounding=ROUND_FLOOR)


def percent_of(amount, percentage) -> Decimal:
    return to_decimal(amount) * to_decimal(percentage) / HUNDRED
