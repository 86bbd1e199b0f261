"""Money helpers.

All monetary values are ``Decimal`` with two places. Rounding is half-up to
the cent and only happens where a value is finalised (an addon contribution,
a discount, a tax amount), never on intermediate products.

Conversion chain
----------------
Dollars × 100 → cents (gateway amounts)
Cents ÷ 100 → dollars
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

# ─── constants ───────────────────────────────────────────────────────────────

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
CENTS_PER_DOLLAR: int = 100

Number = Union[Decimal, int, str]


# ─── helpers ─────────────────────────────────────────────────────────────────


def to_decimal(value: Number) -> Decimal:
    """Coerce an int/str/Decimal to Decimal. Floats are rejected."""
    if isinstance(value, float):
        raise TypeError("Use Decimal or str for money, not float")
    if isinstance(value, Decimal):
        return value
    return Decimal(value)


def round_money(value: Number) -> Decimal:
    """Round to the cent, half-up. $7.4985 → $7.50."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Number, percent: Number) -> Decimal:
    """``amount × percent / 100`` rounded half-up to the cent."""
    return round_money(to_decimal(amount) * to_decimal(percent) / HUNDRED)


def sum_money(values: Iterable[Number]) -> Decimal:
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return round_money(total)


def dollars_to_cents(amount: Number) -> int:
    """Convert dollars to integer cents (round half-up)."""
    return int(round_money(amount) * CENTS_PER_DOLLAR)


def cents_to_dollars(cents: int) -> Decimal:
    return round_money(Decimal(cents) / CENTS_PER_DOLLAR)
