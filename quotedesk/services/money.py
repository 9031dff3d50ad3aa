"""
Money helpers: exact Decimal arithmetic for currency amounts.

Amounts are quantized to cents with ROUND_HALF_UP; floats are converted via
their string form so 0.1 stays 0.10 rather than 0.1000000000000000055.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Sequence, Union

CENT = Decimal("0.01")
PERCENT_PLACES = Decimal("0.0001")
ZERO = Decimal("0.00")

MoneyLike = Union[Decimal, int, float, str]


def to_money(value: MoneyLike) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc


def to_money_or_none(value: Optional[MoneyLike]) -> Optional[Decimal]:
    if value is None:
        return None
    return to_money(value)


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole * 100, or 0 when whole is 0."""
    if not whole:
        return Decimal("0").quantize(PERCENT_PLACES)
    return (Decimal(part) / Decimal(whole) * 100).quantize(
        PERCENT_PLACES, rounding=ROUND_HALF_UP
    )


def safe_average(total: Decimal, count: int) -> Decimal:
    if count <= 0:
        return ZERO
    return (Decimal(total) / count).quantize(CENT, rounding=ROUND_HALF_UP)


def split_evenly_per_unit(total: Decimal, quantities: Sequence[int]) -> list[Decimal]:
    """
    Split `total` across lines by quantity (same price per unit).

    Works in whole cents by largest remainder: every line gets the floor of its
    exact share and the leftover cents go to the lines with the largest
    fractional parts, later lines first on a tie. Parts always sum exactly to
    `total` and none is negative.
    """
    if not quantities:
        return []
    total = to_money(total)
    units = sum(quantities)
    if units <= 0 or any(qty < 0 for qty in quantities):
        raise ValueError("Total quantity must be positive")

    cents = int(total * 100)
    shares = [divmod(cents * qty, units) for qty in quantities]
    leftover = cents - sum(floor for floor, _ in shares)
    ranked = sorted(range(len(quantities)), key=lambda i: (shares[i][1], i), reverse=True)
    bonus = set(ranked[:leftover])
    return [
        (Decimal(floor + (1 if idx in bonus else 0)) / 100).quantize(CENT)
        for idx, (floor, _) in enumerate(shares)
    ]
