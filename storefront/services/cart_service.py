"""Per-user cart.

Callers hold ``cart_locks.hold(user_id)`` around every mutation and commit
afterwards; functions here only flush. Totals are always rebuilt from the
live item list.
"""

from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.logging import get_logger
from storefront.domain.enums import OrderStatus
from storefront.domain.money import ZERO, to_money
from storefront.models.cart import Cart, CartItem
from storefront.models.order import Order, OrderItem
from storefront.models.product import Product
from storefront.schemas.cart import CartItemCreate
from storefront.services import coupon_service
from storefront.services.catalog_client import as_uuid, get_product
from storefront.services.exceptions import (
    CouponAlreadyAppliedError,
    CouponInvalidError,
    DomainValidationError,
    InsufficientStockError,
    InvalidQuantityError,
    ResourceNotFoundError,
)
from storefront.services.pricing import items_subtotal, line_total, payable_total

logger = get_logger(__name__)


def _validate_quantity(quantity: int) -> None:
    if quantity is None or int(quantity) < 1:
        raise InvalidQuantityError("Quantity must be at least 1; remove the item instead.")


def recompute_totals(cart: Cart) -> None:
    subtotal = items_subtotal(cart.items)
    for item in cart.items:
        item.line_total = line_total(item.unit_price, item.quantity)

    discount = ZERO
    if cart.coupon is not None:
        reason = coupon_service.ineligibility_reason(cart.coupon, subtotal)
        if reason:
            logger.info(
                "Coupon detached from cart",
                extra={"cart_id": str(cart.id), "coupon": cart.coupon.code, "reason": reason},
            )
            cart.coupon_removed = cart.coupon.code
            cart.coupon = None
        else:
            discount = coupon_service.compute_discount(cart.coupon, subtotal)

    cart.subtotal_amount = subtotal
    cart.discount_amount = discount
    cart.total_amount = payable_total(subtotal, discount)


async def _refresh_cart(db: AsyncSession, cart: Cart) -> None:
    await db.refresh(cart, attribute_names=["updated_at", "items", "coupon"])
    for item in cart.items:
        await db.refresh(item, attribute_names=["created_at"])


def _cart_query(user_id: uuid.UUID, *, for_update: bool = False):
    stmt = (
        select(Cart)
        .options(selectinload(Cart.items))
        .where(Cart.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update(of=Cart)
    return stmt


async def get_or_create_cart(db: AsyncSession, user_id, *, for_update: bool = False) -> Cart:
    user_uuid = as_uuid(user_id, "user_id")
    result = await db.execute(_cart_query(user_uuid, for_update=for_update))
    cart = result.scalars().first()
    if cart:
        return cart

    cart = Cart(
        user_id=user_uuid,
        subtotal_amount=ZERO,
        discount_amount=ZERO,
        total_amount=ZERO,
    )
    db.add(cart)
    try:
        await db.flush()
    except IntegrityError:
        # created concurrently by another worker
        await db.rollback()
        result = await db.execute(_cart_query(user_uuid, for_update=for_update))
        return result.scalars().one()
    await db.refresh(cart, attribute_names=["created_at", "updated_at", "items", "coupon"])
    return cart


async def get_cart(db: AsyncSession, user_id) -> Cart:
    cart = await get_or_create_cart(db, user_id)
    await _refresh_cart(db, cart)
    return cart


async def _available_for(db: AsyncSession, user_id: uuid.UUID, product: Product) -> int:
    """Available units, counting those held by the user's own pending checkout.

    The next checkout of this cart supersedes that one and releases them.
    """
    stmt = (
        select(func.coalesce(func.sum(OrderItem.quantity), 0))
        .join(Order, Order.id == OrderItem.order_id)
        .where(
            Order.user_id == user_id,
            Order.status == OrderStatus.pending,
            Order.holds_stock.is_(True),
            OrderItem.product_id == product.id,
        )
    )
    own = (await db.execute(stmt)).scalar_one()
    return product.available_stock + int(own)


def _get_item(cart: Cart, item_id) -> CartItem:
    item_uuid = as_uuid(item_id, "item_id")
    for item in cart.items:
        if item.id == item_uuid:
            return item
    raise ResourceNotFoundError("Cart item not found")


async def add_item(db: AsyncSession, *, user_id, payload: CartItemCreate) -> Cart:
    _validate_quantity(payload.quantity)
    cart = await get_or_create_cart(db, user_id, for_update=True)
    product = await get_product(db, payload.product_id)
    await db.refresh(product, attribute_names=["stock_on_hand", "stock_reserved"])

    if cart.items and product.currency != cart.currency:
        raise DomainValidationError("All cart items must share the same currency")

    existing = next((i for i in cart.items if i.product_id == product.id), None)
    requested = payload.quantity + (existing.quantity if existing else 0)
    available = await _available_for(db, cart.user_id, product)
    if requested > available:
        raise InsufficientStockError(f"Only {max(available, 0)} unit(s) of {product.name} available")

    if existing:
        existing.quantity = requested
    else:
        unit_price = to_money(product.price)
        cart.currency = product.currency
        cart.items.append(
            CartItem(
                product_id=product.id,
                quantity=payload.quantity,
                unit_price=unit_price,
                line_total=line_total(unit_price, payload.quantity),
            )
        )

    recompute_totals(cart)
    await db.flush()
    await _refresh_cart(db, cart)
    logger.info(
        "Cart item added",
        extra={"cart_id": str(cart.id), "product_id": str(product.id), "quantity": requested},
    )
    return cart


async def set_quantity(db: AsyncSession, *, user_id, item_id, quantity: int) -> Cart:
    _validate_quantity(quantity)
    cart = await get_or_create_cart(db, user_id, for_update=True)
    item = _get_item(cart, item_id)

    product = await get_product(db, item.product_id)
    await db.refresh(product, attribute_names=["stock_on_hand", "stock_reserved"])
    available = await _available_for(db, cart.user_id, product)
    if quantity > available:
        raise InsufficientStockError(f"Only {max(available, 0)} unit(s) of {product.name} available")

    item.quantity = quantity
    recompute_totals(cart)
    await db.flush()
    await _refresh_cart(db, cart)
    return cart


async def remove_item(db: AsyncSession, *, user_id, item_id) -> Cart:
    cart = await get_or_create_cart(db, user_id, for_update=True)
    item = _get_item(cart, item_id)
    cart.items.remove(item)
    recompute_totals(cart)
    await db.flush()
    await _refresh_cart(db, cart)
    return cart


async def apply_coupon(db: AsyncSession, *, user_id, code: str) -> Cart:
    cart = await get_or_create_cart(db, user_id, for_update=True)
    if cart.coupon is not None:
        raise CouponAlreadyAppliedError(
            f"Coupon {cart.coupon.code} is already applied; remove it first"
        )

    coupon = await coupon_service.find_coupon(db, code)
    subtotal = items_subtotal(cart.items)
    coupon = await coupon_service.ensure_applicable(db, coupon, cart, subtotal)

    cart.coupon = coupon
    recompute_totals(cart)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise CouponInvalidError("Coupon has already been used") from exc
    await _refresh_cart(db, cart)
    logger.info(
        "Coupon applied",
        extra={"cart_id": str(cart.id), "coupon": coupon.code, "discount": str(cart.discount_amount)},
    )
    return cart


async def remove_coupon(db: AsyncSession, *, user_id) -> Cart:
    cart = await get_or_create_cart(db, user_id, for_update=True)
    cart.coupon = None
    recompute_totals(cart)
    await db.flush()
    await _refresh_cart(db, cart)
    return cart


async def clear_cart(db: AsyncSession, cart: Cart) -> None:
    """Empty the cart after a confirmed payment; the row itself is kept."""
    cart.items.clear()
    cart.coupon = None
    recompute_totals(cart)
    await db.flush()
