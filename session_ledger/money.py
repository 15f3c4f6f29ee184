"""
Money helpers. All amounts are Decimal; rounding is ROUND_HALF_UP to cents.
"""

from decimal import ROUND_HALF_UP, ROUND_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """Coerce DB/JSON numbers to Decimal without float artefacts."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_money_up(value: Decimal) -> Decimal:
    """Round up to the next cent, for "amount still owed" figures."""
    return value.quantize(CENT, rounding=ROUND_UP)
