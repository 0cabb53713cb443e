"""
Minor-unit money arithmetic.

All prices are integers in the currency's minor unit (cents, paise).
Percentages are Decimals; results are rounded half-up to a whole minor unit.
"""

from decimal import ROUND_HALF_UP, Decimal

_HUNDRED = Decimal(100)


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def discounted(amount: int, percent: Decimal) -> int:
    """Return `amount` reduced by `percent`, rounded to the minor unit."""
    return round_half_up(Decimal(amount) * (_HUNDRED - percent) / _HUNDRED)


def surcharged(amount: int, percent: Decimal) -> int:
    """Return `amount` increased by `percent`, rounded to the minor unit."""
    return round_half_up(Decimal(amount) * (_HUNDRED + percent) / _HUNDRED)


def to_major_units(amount: int, exponent: int = 2) -> Decimal:
    """1800 with exponent 2 -> Decimal('18.00')."""
    return Decimal(amount).scaleb(-exponent).quantize(Decimal(1).scaleb(-exponent))
