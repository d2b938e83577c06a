"""Payment reconciliation.

A callback or webhook only tells us *which* reference to look at; the outcome
always comes from the gateway's verify endpoint. The payment row moves out of
``pending`` through a conditional update, so replays and concurrent callbacks
apply their effects exactly once.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.locks import cart_locks
from storefront.core.logging import get_logger, security_alert
from storefront.core.metrics import record_reconciliation
from storefront.db.operations import commit_async, rollback_async
from storefront.domain.enums import OrderStatus, PaymentStatus, TransitionActor
from storefront.models.order import Order, Payment
from storefront.models.user import User
from storefront.services import cart_service, coupon_service, email_service, order_service
from storefront.services.exceptions import (
    DomainValidationError,
    InvalidSignatureError,
    InvalidTransitionError,
    PaymentGatewayUnavailableError,
    UnknownReferenceError,
)
from storefront.services.payment_providers import (
    PaymentProviderConfigurationError,
    PaymentProviderRejectedError,
    PaymentProviderUnavailableError,
    paystack,
)

logger = get_logger(__name__)

WEBHOOK_EVENTS = frozenset({"charge.success", "charge.failed"})
_PAYMENT_STATE = ["status", "gateway_status", "status_detail", "raw_verification", "verified_at", "updated_at"]

SUPERSEDED = "superseded"

# a superseded payment was never verified, and its checkout page may still be paid
_AWAITING_VERDICT = or_(
    Payment.status == PaymentStatus.pending,
    and_(
        Payment.status == PaymentStatus.failed,
        Payment.status_detail == SUPERSEDED,
        Payment.verified_at.is_(None),
    ),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _awaiting_verdict(payment: Payment) -> bool:
    if payment.status == PaymentStatus.pending:
        return True
    return (
        payment.status == PaymentStatus.failed
        and payment.status_detail == SUPERSEDED
        and payment.verified_at is None
    )


async def _load_payment(db: AsyncSession, reference: str) -> Optional[Payment]:
    stmt = (
        select(Payment)
        .options(selectinload(Payment.order).selectinload(Order.items))
        .where(Payment.reference == reference)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def _settle_payment(
    db: AsyncSession,
    payment: Payment,
    new_status: PaymentStatus,
    *,
    data: dict[str, Any],
    detail: Optional[str] = None,
) -> bool:
    """Record the gateway's verdict on ``payment``; False if someone else already did."""
    stmt = (
        update(Payment)
        .where(Payment.id == payment.id, _AWAITING_VERDICT)
        .values(
            status=new_status,
            gateway_status=str(data.get("status") or "")[:40] or None,
            status_detail=detail,
            raw_verification=data,
            verified_at=_utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.refresh(payment, attribute_names=_PAYMENT_STATE)
    return result.rowcount == 1


async def _refreshed_order(db: AsyncSession, payment: Payment) -> Order:
    order = payment.order
    await db.refresh(order)
    await db.refresh(order, attribute_names=["items", "payment"])
    return order


def _amount_matches(payment: Payment, data: dict[str, Any]) -> bool:
    try:
        amount = int(data.get("amount"))
    except (TypeError, ValueError):
        return False
    currency = str(data.get("currency") or "").upper()
    return amount == payment.amount_minor and currency == payment.currency.upper()


async def _mark_order_payment_failed(db: AsyncSession, order_id) -> None:
    await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.payment_status == PaymentStatus.pending)
        .values(payment_status=PaymentStatus.failed)
        .execution_options(synchronize_session=False)
    )


async def supersede(db: AsyncSession, order: Order) -> bool:
    """Retire a pending checkout because the customer started a new one.

    The payment is marked failed with detail ``superseded`` and the order's
    reservation is released. The order itself stays pending. Flushes only.
    """
    payment = order.payment
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PaymentStatus.pending)
        .values(status=PaymentStatus.failed, status_detail=SUPERSEDED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    await _mark_order_payment_failed(db, order.id)
    await order_service.release_stock(db, order, f"checkout {order.order_number} superseded")
    await db.refresh(payment, attribute_names=_PAYMENT_STATE)
    await db.refresh(order, attribute_names=["payment_status"])
    logger.info(
        "Pending checkout superseded",
        extra={"order_number": order.order_number, "reference": payment.reference},
    )
    return True


async def _apply_failure(db: AsyncSession, payment: Payment, data: dict[str, Any], detail: str) -> Order:
    if await _settle_payment(db, payment, PaymentStatus.failed, data=data, detail=detail):
        await _mark_order_payment_failed(db, payment.order_id)
        # the order stays pending; a retried checkout reserves again
        await order_service.release_stock(db, payment.order, f"payment {payment.reference} failed")
        outcome = "failed"
    else:
        outcome = "replayed"
    await commit_async(db)
    record_reconciliation(outcome)
    logger.info(
        "Payment verification failed",
        extra={"reference": payment.reference, "detail": detail, "outcome": outcome},
    )
    return await _refreshed_order(db, payment)


async def _notify_customer(db: AsyncSession, order: Order) -> None:
    user = await db.get(User, order.user_id) if order.user_id else None
    if user is None:
        return
    email_service.send_order_confirmation(user.email, order)


async def _apply_success(db: AsyncSession, payment: Payment, data: dict[str, Any]) -> Order:
    if not _amount_matches(payment, data):
        security_alert(
            "Verified payment does not match the expected amount",
            reference=payment.reference,
            expected_amount=payment.amount_minor,
            expected_currency=payment.currency,
            verified_amount=data.get("amount"),
            verified_currency=data.get("currency"),
        )
        return await _apply_failure(db, payment, data, "amount_mismatch")

    order = payment.order
    superseded = payment.status == PaymentStatus.failed
    async with cart_locks.hold(order.user_id):
        if not await _settle_payment(db, payment, PaymentStatus.completed, data=data):
            await commit_async(db)
            record_reconciliation("replayed")
            return await _refreshed_order(db, payment)

        await db.refresh(order, attribute_names=["status", "payment_status"])
        order.payment_status = PaymentStatus.completed
        await db.flush()
        if superseded:
            # its stock and coupon may already belong to the newer checkout
            await commit_async(db)
            record_reconciliation("paid_after_supersede")
            security_alert(
                "Payment completed for a superseded checkout, refund required",
                reference=payment.reference,
                order_number=order.order_number,
            )
            return await _refreshed_order(db, payment)
        try:
            await order_service.transition(db, order, OrderStatus.paid, actor=TransitionActor.reconciler)
        except InvalidTransitionError:
            await commit_async(db)
            record_reconciliation("paid_after_cancel")
            security_alert(
                "Payment completed for an order that can no longer be paid, refund required",
                reference=payment.reference,
                order_number=order.order_number,
                order_status=OrderStatus(order.status).value,
            )
            return await _refreshed_order(db, payment)

        if order.coupon_code:
            coupon = await coupon_service.find_coupon(db, order.coupon_code)
            if coupon is not None and coupon.redeemed_at is None:
                coupon_service.mark_redeemed(coupon, order)
                # reloading the cart below repopulates the joined coupon row
                await db.flush()
            elif coupon is not None and coupon.redeemed_order_id != order.id:
                security_alert(
                    "Single-use coupon discounted into a second paid order",
                    coupon=coupon.code,
                    order_number=order.order_number,
                    redeemed_order_id=str(coupon.redeemed_order_id),
                )
        if order.user_id is not None:
            cart = await cart_service.get_or_create_cart(db, order.user_id, for_update=True)
            await cart_service.clear_cart(db, cart)
        await commit_async(db)

    record_reconciliation("paid")
    logger.info(
        "Payment confirmed",
        extra={"reference": payment.reference, "order_number": order.order_number},
    )
    order = await _refreshed_order(db, payment)
    await _notify_customer(db, order)
    return order


async def reconcile(db: AsyncSession, reference: str) -> Order:
    """Apply the gateway's verdict for ``reference`` and return the order.

    Safe to call any number of times. Raises ``UnknownReferenceError`` for
    references we never issued and ``PaymentGatewayUnavailableError`` when
    the gateway cannot be asked; neither changes any state.
    """
    reference = (reference or "").strip()
    payment = await _load_payment(db, reference) if reference else None
    if payment is None:
        record_reconciliation("unknown_reference")
        security_alert("Payment confirmation for an unknown reference", reference=reference)
        raise UnknownReferenceError("No payment matches this reference")

    if not _awaiting_verdict(payment):
        record_reconciliation("replayed")
        return await _refreshed_order(db, payment)

    # no transaction stays open across the gateway round trip
    await commit_async(db)
    try:
        data = await paystack.verify_transaction(reference)
    except (PaymentProviderUnavailableError, PaymentProviderConfigurationError) as exc:
        record_reconciliation("gateway_unavailable")
        logger.warning("Payment verification unavailable", extra={"reference": reference, "error": str(exc)})
        raise PaymentGatewayUnavailableError(
            "Payment could not be verified right now; it will be retried"
        ) from exc
    except PaymentProviderRejectedError as exc:
        record_reconciliation("unverified")
        logger.warning("Gateway has no verdict for reference", extra={"reference": reference, "error": str(exc)})
        return await _refreshed_order(db, payment)

    gateway_status = str(data.get("status") or "").lower()
    try:
        if gateway_status in paystack.SUCCESS_STATUSES:
            return await _apply_success(db, payment, data)
        if gateway_status in paystack.FAILED_STATUSES:
            return await _apply_failure(db, payment, data, gateway_status)
    except Exception:
        await rollback_async(db)
        raise

    # ongoing, pending, abandoned and friends: the customer may still complete it
    record_reconciliation("pending")
    logger.info("Payment not final yet", extra={"reference": reference, "gateway_status": gateway_status})
    return await _refreshed_order(db, payment)


def _parse_webhook(body: bytes) -> tuple[Optional[str], Optional[str]]:
    try:
        payload = json.loads(body or b"{}")
    except ValueError as exc:
        raise DomainValidationError("Webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise DomainValidationError("Webhook body must be a JSON object")
    data = payload.get("data") or {}
    reference = data.get("reference") if isinstance(data, dict) else None
    return payload.get("event"), reference


def webhook_reference(body: bytes) -> Optional[str]:
    return _parse_webhook(body)[1]


async def handle_webhook(db: AsyncSession, body: bytes, signature: Optional[str]) -> Optional[Order]:
    if not paystack.verify_webhook_signature(body, signature):
        security_alert("Webhook rejected: bad signature", signature_present=bool(signature))
        raise InvalidSignatureError("Invalid webhook signature")

    event, reference = _parse_webhook(body)
    if event not in WEBHOOK_EVENTS or not reference:
        logger.info("Webhook ignored", extra={"event": event})
        return None

    try:
        return await reconcile(db, reference)
    except UnknownReferenceError:
        # acknowledged so the gateway stops redelivering; the alert is already raised
        return None
