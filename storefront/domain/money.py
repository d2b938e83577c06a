"""Fixed-point money helpers.

Amounts are ``Decimal`` values quantized to cents with half-up rounding.
Floats are never accepted implicitly: they are routed through ``str`` so
``0.1`` becomes ``Decimal("0.10")`` instead of its binary approximation.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

MoneyLike = Decimal | int | float | str


def to_money(value: MoneyLike | None) -> Decimal:
    """Coerce ``value`` into a cent-quantized Decimal; ``None`` is zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Invalid money amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid money amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def multiply(unit_price: MoneyLike, quantity: int) -> Decimal:
    return to_money(to_money(unit_price) * int(quantity))


def money_sum(values) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value)
    return to_money(total)


def percentage_of(amount: MoneyLike, percent: MoneyLike) -> Decimal:
    return to_money(to_money(amount) * Decimal(str(percent)) / HUNDRED)


def clamp(amount: MoneyLike, lower: MoneyLike, upper: MoneyLike) -> Decimal:
    return max(to_money(lower), min(to_money(amount), to_money(upper)))


def to_minor_units(amount: MoneyLike) -> int:
    """Gateway representation: integer number of cents."""
    return int((to_money(amount) * HUNDRED).to_integral_value(rounding=ROUND_HALF_UP))
