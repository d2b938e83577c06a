from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_admin
from storefront.core.logging import get_logger
from storefront.db.operations import commit_async, rollback_async
from storefront.db.session_async import get_async_db
from storefront.domain.enums import OrderStatus, PaymentStatus
from storefront.models.user import User as UserModel
from storefront.schemas.coupon import CouponCreate, CouponRead
from storefront.schemas.order import OrderRead
from storefront.services import coupon_service, order_service, payment_service
from storefront.services.exceptions import ServiceError

router = APIRouter(prefix="/admin", tags=["admin"])

logger = get_logger(__name__)


@router.get("/orders", response_model=List[OrderRead])
async def list_orders(
    status_filter: Optional[OrderStatus] = Query(default=None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(default=None),
    user_id: Optional[UUID] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_async_db),
    _: UserModel = Depends(get_current_admin),
):
    return await order_service.list_orders(
        db,
        user_id=user_id,
        status_filter=status_filter,
        payment_status=payment_status,
        limit=limit,
        offset=offset,
    )


@router.post("/payments/{reference}/reconcile", response_model=OrderRead)
async def reconcile_payment(
    reference: str = Path(..., min_length=1, max_length=100),
    db: AsyncSession = Depends(get_async_db),
    admin: UserModel = Depends(get_current_admin),
):
    logger.info("Manual reconciliation requested", extra={"reference": reference, "admin_id": str(admin.id)})
    return await payment_service.reconcile(db, reference)


@router.get("/coupons", response_model=List[CouponRead])
async def list_coupons(
    active: Optional[bool] = Query(default=None),
    db: AsyncSession = Depends(get_async_db),
    _: UserModel = Depends(get_current_admin),
):
    return await coupon_service.list_coupons(db, active=active)


@router.post("/coupons", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
async def create_coupon(
    payload: CouponCreate,
    db: AsyncSession = Depends(get_async_db),
    _: UserModel = Depends(get_current_admin),
):
    try:
        coupon = await coupon_service.create_coupon(db, payload)
        await commit_async(db)
    except ServiceError:
        await rollback_async(db)
        raise
    return coupon
