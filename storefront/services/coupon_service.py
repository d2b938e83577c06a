from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.domain.enums import CouponKind
from storefront.domain.money import ZERO, clamp, percentage_of, to_money
from storefront.models.cart import Cart
from storefront.models.coupon import Coupon
from storefront.models.order import Order
from storefront.schemas.coupon import CouponCreate
from storefront.services.exceptions import ConflictError, CouponInvalidError

logger = get_logger(__name__)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; stored values are always UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def find_coupon(db: AsyncSession, code: str) -> Optional[Coupon]:
    normalized = normalize_code(code)
    if not normalized:
        return None
    result = await db.execute(select(Coupon).where(Coupon.code == normalized))
    return result.scalar_one_or_none()


def ineligibility_reason(
    coupon: Coupon,
    subtotal: Decimal,
    *,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """Why ``coupon`` cannot discount ``subtotal`` right now, or ``None``."""
    now = now or datetime.now(timezone.utc)
    if not coupon.active:
        return "Coupon is not active"
    if coupon.redeemed_at is not None:
        return "Coupon has already been used"
    starts_at = _aware(coupon.starts_at)
    if starts_at and now < starts_at:
        return "Coupon is not valid yet"
    expires_at = _aware(coupon.expires_at)
    if expires_at and now >= expires_at:
        return "Coupon has expired"
    if to_money(subtotal) <= ZERO:
        return "Cart is empty"
    if to_money(subtotal) < to_money(coupon.min_subtotal):
        return f"Cart subtotal must be at least {to_money(coupon.min_subtotal)}"
    return None


async def _attached_elsewhere(db: AsyncSession, coupon: Coupon, cart_id: uuid.UUID) -> bool:
    stmt = select(Cart.id).where(Cart.coupon_id == coupon.id, Cart.id != cart_id).limit(1)
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


async def ensure_applicable(db: AsyncSession, coupon: Optional[Coupon], cart: Cart, subtotal: Decimal) -> Coupon:
    if coupon is None:
        raise CouponInvalidError("Coupon not found")
    reason = ineligibility_reason(coupon, subtotal)
    if reason:
        raise CouponInvalidError(reason)
    if await _attached_elsewhere(db, coupon, cart.id):
        raise CouponInvalidError("Coupon has already been used")
    return coupon


def compute_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    """Discount for ``subtotal``, never more than the subtotal itself."""
    subtotal = to_money(subtotal)
    if coupon.kind == CouponKind.percentage:
        raw = percentage_of(subtotal, coupon.value)
    else:
        raw = to_money(coupon.value)
    return clamp(raw, ZERO, subtotal)


def mark_redeemed(coupon: Coupon, order: Order, *, now: Optional[datetime] = None) -> None:
    coupon.redeemed_at = now or datetime.now(timezone.utc)
    coupon.redeemed_order_id = order.id
    logger.info("Coupon redeemed", extra={"coupon": coupon.code, "order_number": order.order_number})


async def create_coupon(db: AsyncSession, payload: CouponCreate) -> Coupon:
    coupon = Coupon(
        code=payload.code,
        description=payload.description,
        kind=payload.kind,
        value=to_money(payload.value),
        min_subtotal=to_money(payload.min_subtotal),
        starts_at=payload.starts_at,
        expires_at=payload.expires_at,
        active=payload.active,
    )
    db.add(coupon)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise ConflictError(f"Coupon {payload.code} already exists") from exc
    await db.refresh(coupon)
    return coupon


async def list_coupons(db: AsyncSession, *, active: Optional[bool] = None) -> List[Coupon]:
    stmt = select(Coupon).order_by(Coupon.created_at.desc())
    if active is not None:
        stmt = stmt.where(Coupon.active.is_(active))
    result = await db.execute(stmt)
    return list(result.scalars().all())
