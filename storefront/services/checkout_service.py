"""Checkout: snapshot the cart into an order and start a gateway transaction.

The order, its items, the payment row and the stock reservation are committed
together before the gateway is contacted. A gateway failure leaves that
snapshot ``pending`` so the same checkout can be resumed. A checkout of a
changed cart supersedes the earlier one, which gives back its reservation.
"""

from __future__ import annotations

import secrets
import uuid
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.locks import cart_locks
from storefront.core.logging import get_logger
from storefront.core.metrics import record_checkout
from storefront.db.operations import commit_async, rollback_async
from storefront.domain.enums import OrderStatus, PaymentProvider, PaymentStatus
from storefront.domain.money import ZERO, to_minor_units, to_money
from storefront.models.cart import Cart
from storefront.models.order import Order, OrderItem, Payment
from storefront.models.user import User
from storefront.schemas.payment import PaymentHandle
from storefront.services import cart_service, inventory_service, payment_service
from storefront.services.catalog_client import get_product
from storefront.services.exceptions import (
    AmountMismatchError,
    CouponInvalidError,
    EmptyCartError,
    InvalidAmountError,
    PaymentInitiationFailedError,
    ServiceError,
)
from storefront.services.payment_providers import PaymentProviderError, paystack
from storefront.services.pricing import checkout_fingerprint

logger = get_logger(__name__)


def generate_order_number() -> str:
    return f"ORD-{secrets.token_hex(5).upper()}"


def generate_payment_reference() -> str:
    return f"PAY-{uuid.uuid4().hex}"


async def _find_resumable(db: AsyncSession, user_id: uuid.UUID, fingerprint: str) -> Optional[Order]:
    stmt = (
        select(Order)
        .join(Payment, Payment.order_id == Order.id)
        .options(selectinload(Order.items), selectinload(Order.payment))
        .where(
            Order.user_id == user_id,
            Order.status == OrderStatus.pending,
            Order.checkout_fingerprint == fingerprint,
            Payment.status == PaymentStatus.pending,
        )
        .order_by(Order.created_at.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


def _open_checkouts():
    return (
        select(Order)
        .join(Payment, Payment.order_id == Order.id)
        .where(Order.status == OrderStatus.pending, Payment.status == PaymentStatus.pending)
    )


async def _supersede_open_checkouts(db: AsyncSession, user_id: uuid.UUID) -> None:
    """A cart has one live checkout: older ones give back their stock and coupon."""
    stmt = _open_checkouts().options(selectinload(Order.items), selectinload(Order.payment)).where(
        Order.user_id == user_id
    )
    result = await db.execute(stmt)
    for order in result.scalars().all():
        await payment_service.supersede(db, order)


async def _coupon_in_open_checkout(db: AsyncSession, code: str) -> bool:
    stmt = _open_checkouts().where(Order.coupon_code == code).limit(1)
    result = await db.execute(stmt)
    return result.scalars().first() is not None


async def _snapshot_cart(db: AsyncSession, cart: Cart, fingerprint: str) -> Order:
    order = Order(
        order_number=generate_order_number(),
        user_id=cart.user_id,
        currency=cart.currency,
        status=OrderStatus.pending,
        payment_status=PaymentStatus.pending,
        subtotal_amount=to_money(cart.subtotal_amount),
        discount_amount=to_money(cart.discount_amount),
        total_amount=to_money(cart.total_amount),
        coupon_code=cart.coupon_code,
        coupon_discount=to_money(cart.discount_amount) if cart.coupon else None,
        checkout_fingerprint=fingerprint,
    )
    for cart_item in cart.items:
        product = await get_product(db, cart_item.product_id)
        await inventory_service.reserve_stock(
            db, product.id, cart_item.quantity, reason=f"checkout {order.order_number}"
        )
        order.items.append(
            OrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=cart_item.quantity,
                unit_price=to_money(cart_item.unit_price),
                line_total=to_money(cart_item.line_total),
            )
        )

    order.payment = Payment(
        provider=PaymentProvider.paystack,
        reference=generate_payment_reference(),
        status=PaymentStatus.pending,
        amount=order.total_amount,
        amount_minor=to_minor_units(order.total_amount),
        currency=order.currency,
    )
    db.add(order)
    await db.flush()
    return order


async def _prepare(
    db: AsyncSession, user: User, expected_amount_minor: Optional[int]
) -> Tuple[Order, bool]:
    cart = await cart_service.get_or_create_cart(db, user.id, for_update=True)
    # a coupon may have expired since it was applied
    cart_service.recompute_totals(cart)
    await db.flush()

    if not cart.items:
        raise EmptyCartError("Cart is empty")
    total = to_money(cart.total_amount)
    if total <= ZERO:
        raise InvalidAmountError("Order total must be greater than zero")

    amount_minor = to_minor_units(total)
    if expected_amount_minor is not None and int(expected_amount_minor) != amount_minor:
        raise AmountMismatchError(
            f"Cart total changed: expected {expected_amount_minor}, payable amount is {amount_minor}"
        )

    fingerprint = checkout_fingerprint(cart)
    existing = await _find_resumable(db, user.id, fingerprint)
    if existing:
        return existing, True

    await _supersede_open_checkouts(db, user.id)
    if cart.coupon_code and await _coupon_in_open_checkout(db, cart.coupon_code):
        raise CouponInvalidError(f"Coupon {cart.coupon_code} is already part of another checkout")
    return await _snapshot_cart(db, cart, fingerprint), False


def _handle(order: Order) -> PaymentHandle:
    payment = order.payment
    return PaymentHandle(
        status=True,
        authorization_url=payment.authorization_url,
        reference=payment.reference,
        order_id=order.order_number,
        amount=payment.amount_minor,
    )


async def _start_transaction(db: AsyncSession, user: User, order: Order, resumed: bool, email: Optional[str]) -> None:
    payment = order.payment
    if resumed:
        # the earlier attempt never produced a URL, so nobody can have paid against that reference
        payment.reference = generate_payment_reference()

    try:
        data = await paystack.initialize_transaction(
            email=email or user.email,
            amount_minor=payment.amount_minor,
            reference=payment.reference,
            currency=payment.currency,
            metadata={"order_id": order.order_number, "user_id": str(user.id)},
        )
    except PaymentProviderError as exc:
        payment.status_detail = str(exc)[:255]
        await commit_async(db)
        record_checkout("gateway_error")
        logger.warning(
            "Payment initialization failed",
            extra={"order_number": order.order_number, "reference": payment.reference, "error": str(exc)},
        )
        raise PaymentInitiationFailedError(
            "The payment gateway could not start the transaction; retry shortly"
        ) from exc

    payment.authorization_url = data["authorization_url"]
    payment.access_code = data.get("access_code")
    payment.status_detail = None
    await commit_async(db)


async def initiate(
    db: AsyncSession,
    user: User,
    *,
    expected_amount_minor: Optional[int] = None,
    email: Optional[str] = None,
) -> PaymentHandle:
    # the lock also covers the gateway call so a double-submitted checkout
    # finds the first attempt's authorization URL instead of racing it
    async with cart_locks.hold(user.id):
        try:
            order, resumed = await _prepare(db, user, expected_amount_minor)
            await commit_async(db)
        except ServiceError:
            await rollback_async(db)
            record_checkout("rejected")
            raise

        payment = order.payment
        if resumed and payment.authorization_url:
            record_checkout("resumed")
            logger.info(
                "Checkout resumed", extra={"order_number": order.order_number, "reference": payment.reference}
            )
            return _handle(order)

        # no transaction is open across the gateway round trip
        await _start_transaction(db, user, order, resumed, email)

    record_checkout("resumed" if resumed else "created")
    logger.info(
        "Checkout initiated",
        extra={
            "order_number": order.order_number,
            "reference": payment.reference,
            "amount_minor": payment.amount_minor,
            "currency": payment.currency,
        },
    )
    return _handle(order)
