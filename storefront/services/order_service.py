"""Order lookups and the order status state machine.

``transition`` is the only code path that writes ``Order.status``. The write
is a compare-and-swap on the current status, so a late payment confirmation
cannot overwrite an administrator's cancellation and vice versa.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.logging import get_logger
from storefront.core.metrics import record_order_transition
from storefront.domain.enums import OrderStatus, PaymentStatus, TransitionActor
from storefront.models.order import Order
from storefront.services import inventory_service
from storefront.services.catalog_client import as_uuid
from storefront.services.exceptions import InvalidTransitionError, ResourceNotFoundError

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[Tuple[OrderStatus, OrderStatus], TransitionActor] = {
    (OrderStatus.pending, OrderStatus.paid): TransitionActor.reconciler,
    (OrderStatus.paid, OrderStatus.shipped): TransitionActor.admin,
    (OrderStatus.shipped, OrderStatus.delivered): TransitionActor.admin,
    (OrderStatus.pending, OrderStatus.cancelled): TransitionActor.admin,
    (OrderStatus.paid, OrderStatus.cancelled): TransitionActor.admin,
    (OrderStatus.shipped, OrderStatus.cancelled): TransitionActor.admin,
}

TERMINAL_STATUSES = frozenset({OrderStatus.delivered, OrderStatus.cancelled})

_TIMESTAMP_FIELDS = {
    OrderStatus.paid: "paid_at",
    OrderStatus.shipped: "shipped_at",
    OrderStatus.delivered: "delivered_at",
    OrderStatus.cancelled: "cancelled_at",
}
_STATE_FIELDS = ["status", "payment_status", "holds_stock", *_TIMESTAMP_FIELDS.values(), "updated_at"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_transition(current: OrderStatus, new_status: OrderStatus, actor: TransitionActor) -> None:
    """Raise ``InvalidTransitionError`` unless ``actor`` may move ``current`` to ``new_status``."""
    required = ALLOWED_TRANSITIONS.get((current, new_status))
    if required is None:
        raise InvalidTransitionError(f"Cannot move order from {current.value} to {new_status.value}")
    if required != actor:
        raise InvalidTransitionError(
            f"Transition {current.value} -> {new_status.value} is reserved for the {required.value}"
        )


async def _claim_reservation(db: AsyncSession, order: Order) -> bool:
    result = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.holds_stock.is_(True))
        .values(holds_stock=False)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(order, attribute_names=["items", "holds_stock"])
    return result.rowcount == 1


async def release_stock(db: AsyncSession, order: Order, reason: str) -> bool:
    """Return the order's reserved units to available stock.

    Runs at most once per order however many paths (failed payment,
    superseded checkout, cancellation) ask for it. Returns False when the
    order no longer holds a reservation.
    """
    if not await _claim_reservation(db, order):
        return False
    for item in order.items:
        await inventory_service.release_reservation(db, item.product_id, item.quantity, reason)
    return True


async def _apply_stock_effects(
    db: AsyncSession, order: Order, previous: OrderStatus, new_status: OrderStatus
) -> None:
    reason = f"order {order.order_number}: {previous.value} -> {new_status.value}"
    if new_status == OrderStatus.paid:
        reserved = await _claim_reservation(db, order)
        for item in order.items:
            if reserved:
                await inventory_service.commit_sale(db, item.product_id, item.quantity, reason)
            else:
                await inventory_service.sell_unreserved(db, item.product_id, item.quantity, reason)
    elif new_status == OrderStatus.cancelled and previous == OrderStatus.pending:
        await release_stock(db, order, reason)
    elif new_status == OrderStatus.cancelled and previous == OrderStatus.paid:
        await db.refresh(order, attribute_names=["items"])
        for item in order.items:
            await inventory_service.restock(db, item.product_id, item.quantity, reason)
    # shipped -> cancelled: goods already left the warehouse, returns are handled manually


async def transition(
    db: AsyncSession,
    order: Order,
    new_status: OrderStatus | str,
    *,
    actor: TransitionActor,
) -> Order:
    new_status = OrderStatus(new_status)

    # statuses only move forward, so a lost race can repeat at most a few times
    while True:
        current = OrderStatus(order.status)
        if current == new_status:
            return order
        check_transition(current, new_status, actor)

        values = {"status": new_status, _TIMESTAMP_FIELDS[new_status]: _utcnow()}
        stmt = (
            update(Order)
            .where(Order.id == order.id, Order.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount == 1:
            break
        logger.info(
            "Order status changed concurrently, re-evaluating",
            extra={"order_number": order.order_number, "expected": current.value},
        )
        await db.refresh(order, attribute_names=["status"])

    await _apply_stock_effects(db, order, current, new_status)
    await db.refresh(order, attribute_names=_STATE_FIELDS)

    if current == OrderStatus.paid and new_status == OrderStatus.cancelled:
        logger.warning(
            "Paid order cancelled, refund required",
            extra={"order_number": order.order_number, "total": str(order.total_amount)},
        )

    record_order_transition(current.value, new_status.value)
    logger.info(
        "Order status changed",
        extra={
            "order_number": order.order_number,
            "from": current.value,
            "to": new_status.value,
            "actor": actor.value,
        },
    )
    return order


async def get_order_by_number(db: AsyncSession, order_number: str, *, user_id=None) -> Order:
    stmt = (
        select(Order)
        .options(selectinload(Order.items), selectinload(Order.payment))
        .where(Order.order_number == order_number)
        .execution_options(populate_existing=True)
    )
    if user_id is not None:
        stmt = stmt.where(Order.user_id == as_uuid(user_id, "user_id"))
    result = await db.execute(stmt)
    order = result.scalars().first()
    if not order:
        raise ResourceNotFoundError("Order not found")
    return order


async def list_orders(
    db: AsyncSession,
    *,
    user_id=None,
    status_filter: OrderStatus | None = None,
    payment_status: PaymentStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Order]:
    stmt = (
        select(Order)
        .options(selectinload(Order.items), selectinload(Order.payment))
        .order_by(Order.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    if user_id is not None:
        stmt = stmt.where(Order.user_id == as_uuid(user_id, "user_id"))
    if status_filter:
        stmt = stmt.where(Order.status == status_filter)
    if payment_status:
        stmt = stmt.where(Order.payment_status == payment_status)

    result = await db.execute(stmt)
    return list(result.scalars().all())
