from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Security
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_admin, get_current_user
from storefront.db.operations import commit_async, rollback_async
from storefront.db.session_async import get_async_db
from storefront.domain.enums import OrderStatus, PaymentStatus, TransitionActor
from storefront.models.user import User
from storefront.schemas.order import OrderRead, OrderStatusUpdate
from storefront.services import order_service
from storefront.services.exceptions import ServiceError

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=List[OrderRead])
async def list_my_orders(
    status_filter: Optional[OrderStatus] = Query(default=None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["orders:read"]),
):
    return await order_service.list_orders(
        db,
        user_id=current_user.id,
        status_filter=status_filter,
        payment_status=payment_status,
        limit=limit,
        offset=offset,
    )


@router.get("/{order_number}", response_model=OrderRead)
async def get_my_order(
    order_number: str,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["orders:read"]),
):
    return await order_service.get_order_by_number(db, order_number, user_id=current_user.id)


@router.patch("/{order_number}", response_model=OrderRead)
async def update_order_status(
    order_number: str,
    payload: OrderStatusUpdate,
    db: AsyncSession = Depends(get_async_db),
    current_admin: User = Depends(get_current_admin),
):
    try:
        order = await order_service.get_order_by_number(db, order_number)
        await order_service.transition(db, order, payload.status, actor=TransitionActor.admin)
        await commit_async(db)
    except ServiceError:
        await rollback_async(db)
        raise
    return await order_service.get_order_by_number(db, order_number)
