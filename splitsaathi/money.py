from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, List, Sequence

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

AMOUNT_TOLERANCE = Decimal("0.01")
PERCENT_TOLERANCE = Decimal("0.1")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("Cannot convert value to Decimal")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Cannot convert {value!r} to Decimal") from None
    else:
        raise ValueError("Cannot convert value to Decimal")
    if not result.is_finite():
        raise ValueError(f"Amount must be finite, got {value!r}")
    return result.quantize(CENT, rounding=ROUND_HALF_UP)


def to_number(value: Any) -> Decimal:
    """Like to_decimal but unquantized, for percentages and share weights."""
    if isinstance(value, bool):
        raise ValueError("Cannot convert value to Decimal")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Cannot convert {value!r} to Decimal") from None
    else:
        raise ValueError("Cannot convert value to Decimal")
    if not result.is_finite():
        raise ValueError(f"Value must be finite, got {value!r}")
    return result


def to_cents(amount: Decimal) -> int:
    return int(to_decimal(amount) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def amounts_close(a: Decimal, b: Decimal, tolerance: Decimal = AMOUNT_TOLERANCE) -> bool:
    return abs(a - b) <= tolerance


def percent_close(total: Decimal, tolerance: Decimal = PERCENT_TOLERANCE) -> bool:
    return abs(total - HUNDRED) <= tolerance


def format_amount(value: Decimal) -> str:
    return f"{value.quantize(CENT, rounding=ROUND_HALF_UP):.2f}"


def allocate(amount: Decimal, weights: Sequence[Decimal]) -> List[Decimal]:
    """Divide ``amount`` in proportion to ``weights`` in whole cents.

    Every entry first gets the floor of its exact share. The cents left over
    go one each to the entries with the largest fractional remainder, earlier
    entries winning ties, so the result always sums to ``amount``.
    """
    if not weights:
        raise ValueError("weights must not be empty")
    if any(w < 0 for w in weights):
        raise ValueError("weights must not be negative")
    total_weight = sum(weights, Decimal(0))
    if total_weight <= 0:
        raise ValueError("weights must not all be zero")

    total_cents = to_cents(amount)
    if total_cents < 0:
        raise ValueError("amount must not be negative")
    floors: List[int] = []
    remainders: List[Decimal] = []
    for weight in weights:
        exact = Decimal(total_cents) * weight / total_weight
        floor = int(exact)
        floors.append(floor)
        remainders.append(exact - floor)

    leftover = total_cents - sum(floors)
    order = sorted(range(len(weights)), key=lambda i: (-remainders[i], i))
    for index in order[:leftover]:
        floors[index] += 1

    return [from_cents(cents) for cents in floors]


def absorb_remainder(amount: Decimal, values: Sequence[Decimal]) -> List[Decimal]:
    """Return ``values`` adjusted to sum exactly to ``amount``.

    The whole difference lands on the largest value, earlier entries winning
    ties as in ``allocate``. Callers only pass differences already accepted
    by a tolerance check.
    """
    adjusted = list(values)
    difference = amount - sum(adjusted, ZERO)
    if not adjusted or difference == 0:
        return adjusted
    index = max(range(len(adjusted)), key=lambda i: (adjusted[i], -i))
    adjusted[index] += difference
    return adjusted


def split_equally(amount: Decimal, count: int) -> List[Decimal]:
    if count <= 0:
        raise ValueError("count must be positive")
    return allocate(amount, [Decimal(1)] * count)
