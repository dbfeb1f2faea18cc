"""
Money and quantity primitives.

All ledger arithmetic is done on decimal.Decimal at fixed scales:

- quantities:  3 places  (QUANTITY_SCALE)
- unit costs:  4 places  (COST_SCALE, the ledger's fixed precision)
- money:       2 places  (MONEY_SCALE)

Rounding is half-up everywhere. Floats are converted through str() so the
binary representation never leaks into stored values.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, ROUND_DOWN
from typing import Iterable

from .errors import ValidationError


QUANTITY_SCALE = Decimal("0.001")
COST_SCALE = Decimal("0.0001")
MONEY_SCALE = Decimal("0.01")

ZERO = Decimal("0")


def to_decimal(value, *, field: str = "value") -> Decimal:
    """Coerce user or database input to Decimal, rejecting non-numeric values."""
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def quantize_quantity(value) -> Decimal:
    return to_decimal(value, field="quantity").quantize(QUANTITY_SCALE, rounding=ROUND_HALF_UP)


def quantize_cost(value) -> Decimal:
    return to_decimal(value, field="unit_cost").quantize(COST_SCALE, rounding=ROUND_HALF_UP)


def quantize_money(value) -> Decimal:
    return to_decimal(value, field="amount").quantize(MONEY_SCALE, rounding=ROUND_HALF_UP)


def weighted_average_cost(pairs: Iterable[tuple[Decimal, Decimal]]) -> Decimal | None:
    """
    Weighted average unit cost over (quantity, unit_cost) pairs.

    Pairs with non-positive quantity are ignored. Returns None when no
    quantity remains, so callers can decide what an empty average means.
    """
    total_qty = ZERO
    total_cost = ZERO
    for qty, unit_cost in pairs:
        if qty <= 0:
            continue
        total_qty += qty
        total_cost += qty * unit_cost
    if total_qty <= 0:
        return None
    return quantize_cost(total_cost / total_qty)


def split_proportionally(total: Decimal, weights: list[Decimal]) -> list[Decimal]:
    """
    Split ``total`` across ``weights`` at quantity scale.

    Uses the largest-remainder method so the parts always sum to exactly
    ``total``. Zero-weight entries receive zero.
    """
    total = quantize_quantity(total)
    weight_sum = sum(weights, ZERO)
    if not weights or weight_sum <= 0:
        return [ZERO for _ in weights]

    raw = [total * w / weight_sum for w in weights]
    parts = [r.quantize(QUANTITY_SCALE, rounding=ROUND_DOWN) for r in raw]
    leftover = total - sum(parts, ZERO)

    # Hand out the remaining units, one scale step at a time, biggest remainder first
    order = sorted(range(len(weights)), key=lambda i: (raw[i] - parts[i]), reverse=True)
    idx = 0
    while leftover > 0:
        i = order[idx % len(order)]
        if weights[i] > 0:
            parts[i] += QUANTITY_SCALE
            leftover -= QUANTITY_SCALE
        idx += 1
    return parts


def decimal_str(value: Decimal | None) -> str | None:
    """Serialize a Decimal for JSON without scientific notation."""
    if value is None:
        return None
    return format(value, "f")
