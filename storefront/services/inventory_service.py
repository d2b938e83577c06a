"""Stock bookkeeping for orders.

Every change is a single conditional ``UPDATE`` so two checkouts racing for
the last unit cannot both succeed, regardless of isolation level.
"""

from __future__ import annotations

import uuid

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.models.product import Product
from storefront.services.exceptions import InsufficientStockError, InvalidQuantityError

logger = get_logger(__name__)


def _check_quantity(quantity: int) -> None:
    if quantity <= 0:
        raise InvalidQuantityError("Quantity must be greater than 0.")


async def reserve_stock(db: AsyncSession, product_id: uuid.UUID, quantity: int, reason: str | None = None) -> None:
    _check_quantity(quantity)
    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.active.is_(True),
            Product.stock_on_hand - Product.stock_reserved >= quantity,
        )
        .values(stock_reserved=Product.stock_reserved + quantity)
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        raise InsufficientStockError("Not enough stock available for the requested quantity.")
    logger.info("Stock reserved", extra={"product_id": str(product_id), "quantity": quantity, "reason": reason})


async def release_reservation(db: AsyncSession, product_id: uuid.UUID, quantity: int, reason: str | None = None) -> None:
    _check_quantity(quantity)
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_reserved >= quantity)
        .values(stock_reserved=Product.stock_reserved - quantity)
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        logger.error(
            "Reservation smaller than release request",
            extra={"product_id": str(product_id), "quantity": quantity, "reason": reason},
        )


async def commit_sale(db: AsyncSession, product_id: uuid.UUID, quantity: int, reason: str | None = None) -> None:
    """Turn a reservation into a sale once the money is in.

    Never raises for missing stock: the payment has already been captured, so
    an inconsistency is logged for manual follow-up instead of blocking the
    order.
    """
    _check_quantity(quantity)
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_reserved >= quantity)
        .values(
            stock_on_hand=Product.stock_on_hand - quantity,
            stock_reserved=Product.stock_reserved - quantity,
        )
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(stmt)
    if result.rowcount == 1:
        return

    adjusted = await sell_unreserved(db, product_id, quantity, reason)
    logger.error(
        "Sale committed without a matching reservation",
        extra={
            "product_id": str(product_id),
            "quantity": quantity,
            "reason": reason,
            "stock_adjusted": adjusted,
        },
    )


async def sell_unreserved(db: AsyncSession, product_id: uuid.UUID, quantity: int, reason: str | None = None) -> bool:
    """Take sold units from unreserved stock; False when not enough is left."""
    _check_quantity(quantity)
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_on_hand - Product.stock_reserved >= quantity)
        .values(stock_on_hand=Product.stock_on_hand - quantity)
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        logger.error(
            "Sold units exceed available stock",
            extra={"product_id": str(product_id), "quantity": quantity, "reason": reason},
        )
        return False
    return True


async def restock(db: AsyncSession, product_id: uuid.UUID, quantity: int, reason: str | None = None) -> None:
    _check_quantity(quantity)
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock_on_hand=Product.stock_on_hand + quantity)
        .execution_options(synchronize_session="fetch")
    )
    await db.execute(stmt)
    logger.info("Stock returned", extra={"product_id": str(product_id), "quantity": quantity, "reason": reason})
