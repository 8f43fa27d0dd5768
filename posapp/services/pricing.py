from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from posapp.errors import ValidationError

DECIMAL_QUANT = Decimal("0.01")
ZERO = Decimal("0")


@dataclass(frozen=True)
class OrderTotals:
    raw_total: Decimal
    applied_discount: Decimal
    effective_total: Decimal


def to_money(value: Any) -> Decimal:
    if value is None:
        return ZERO.quantize(DECIMAL_QUANT)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(DECIMAL_QUANT, rounding=ROUND_HALF_UP)


def raw_total(lines: Iterable[Any]) -> Decimal:
    """Sum of price x quantity; lines expose ``price`` and ``quantity``."""

    total = ZERO
    for line in lines:
        total += to_money(line.price) * int(line.quantity)
    return to_money(total)


def apply_discount(raw: Decimal, discount: Any = None) -> OrderTotals:
    # Flat amount in the shop currency, never a percentage.
    discount_value = to_money(discount)
    if discount_value < 0:
        raise ValidationError("Discount cannot be negative.")

    raw = to_money(raw)
    applied = min(discount_value, raw)
    effective = max(ZERO, raw - applied)
    return OrderTotals(
        raw_total=raw,
        applied_discount=to_money(applied),
        effective_total=to_money(effective),
    )


def compute_totals(lines: Iterable[Any], discount: Any = None) -> OrderTotals:
    return apply_discount(raw_total(lines), discount)
