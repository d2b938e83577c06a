from __future__ import annotations

import hashlib
from decimal import Decimal
from typing import Iterable

from storefront.domain.money import money_sum, multiply, to_money
from storefront.models.cart import Cart, CartItem


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    return multiply(unit_price, quantity)


def items_subtotal(items: Iterable[CartItem]) -> Decimal:
    """Sum of unit_price x quantity over the live items; stored line totals are ignored."""
    return money_sum(line_total(item.unit_price, item.quantity) for item in items)


def payable_total(subtotal: Decimal, discount: Decimal) -> Decimal:
    return to_money(to_money(subtotal) - to_money(discount))


def checkout_fingerprint(cart: Cart) -> str:
    """Stable digest of what the customer is about to pay for."""
    parts = sorted(
        f"{item.product_id}:{item.quantity}:{to_money(item.unit_price)}" for item in cart.items
    )
    parts.append(f"coupon:{cart.coupon_code or ''}:{to_money(cart.discount_amount)}")
    parts.append(f"currency:{cart.currency}")
    return hashlib.sha256("|".join(parts).encode()).hexdigest()
