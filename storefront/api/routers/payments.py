from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query, Request, Security
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_user
from storefront.db.session_async import get_async_db
from storefront.domain.enums import OrderStatus, PaymentStatus
from storefront.models.order import Order
from storefront.models.user import User
from storefront.schemas.payment import PaymentCallbackResponse, PaymentHandle, PaymentInitiateRequest
from storefront.services import checkout_service, payment_service
from storefront.services.exceptions import PaymentGatewayUnavailableError
from storefront.tasks.payments import schedule_reconcile

router = APIRouter(prefix="/payment", tags=["payments"])


def _callback_view(order: Order) -> PaymentCallbackResponse:
    payment_status = PaymentStatus(order.payment.status)
    return PaymentCallbackResponse(
        status=payment_status == PaymentStatus.completed,
        order_id=order.order_number,
        payment_status=payment_status.value,
        order_status=OrderStatus(order.status).value,
    )


@router.post("/initiate", response_model=PaymentHandle)
async def initiate_payment(
    payload: PaymentInitiateRequest,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["orders:write"]),
):
    return await checkout_service.initiate(
        db,
        current_user,
        expected_amount_minor=payload.amount,
        email=payload.email,
    )


@router.get("/callback", response_model=PaymentCallbackResponse)
async def payment_callback(
    reference: str = Query(..., min_length=1, max_length=100),
    db: AsyncSession = Depends(get_async_db),
):
    try:
        order = await payment_service.reconcile(db, reference)
    except PaymentGatewayUnavailableError:
        schedule_reconcile(reference)
        raise
    return _callback_view(order)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_paystack_signature: str | None = Header(default=None),
    db: AsyncSession = Depends(get_async_db),
):
    body = await request.body()
    try:
        order = await payment_service.handle_webhook(db, body, x_paystack_signature)
    except PaymentGatewayUnavailableError:
        schedule_reconcile(payment_service.webhook_reference(body))
        raise
    return {"status": "ok", "order_id": order.order_number if order else None}
