from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Security, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_user
from storefront.core.locks import cart_locks
from storefront.db.operations import commit_async, rollback_async
from storefront.db.session_async import get_async_db
from storefront.models.user import User
from storefront.schemas.cart import ApplyCouponRequest, CartItemCreate, CartItemUpdate, CartRead
from storefront.services import cart_service
from storefront.services.exceptions import ServiceError

router = APIRouter(tags=["cart"])


async def _run(db: AsyncSession, user: User, operation, **kwargs):
    """Run one cart mutation under the owner's lock and commit it."""
    async with cart_locks.hold(user.id):
        try:
            cart = await operation(db, user_id=user.id, **kwargs)
            await commit_async(db)
        except ServiceError:
            await rollback_async(db)
            raise
    return cart


@router.get("/carts", response_model=CartRead)
async def get_cart(
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["cart:write"]),
):
    async with cart_locks.hold(current_user.id):
        cart = await cart_service.get_cart(db, current_user.id)
        await commit_async(db)
    return cart


@router.post("/cart-items", response_model=CartRead, status_code=status.HTTP_201_CREATED)
async def add_cart_item(
    item: CartItemCreate,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["cart:write"]),
):
    return await _run(db, current_user, cart_service.add_item, payload=item)


@router.patch("/cart-items/{item_id}", response_model=CartRead)
async def update_cart_item(
    item_id: UUID,
    payload: CartItemUpdate,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["cart:write"]),
):
    return await _run(db, current_user, cart_service.set_quantity, item_id=item_id, quantity=payload.quantity)


@router.delete("/cart-items/{item_id}", response_model=CartRead)
async def remove_cart_item(
    item_id: UUID,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["cart:write"]),
):
    return await _run(db, current_user, cart_service.remove_item, item_id=item_id)


@router.post("/carts/apply-coupon", response_model=CartRead)
async def apply_coupon(
    payload: ApplyCouponRequest,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["cart:write"]),
):
    return await _run(db, current_user, cart_service.apply_coupon, code=payload.coupon)


@router.delete("/carts/coupon", response_model=CartRead)
async def remove_coupon(
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["cart:write"]),
):
    return await _run(db, current_user, cart_service.remove_coupon)
