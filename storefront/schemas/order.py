from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from storefront.domain.enums import OrderStatus, PaymentProvider, PaymentStatus


class OrderItemRead(BaseModel):
    id: UUID
    product_id: UUID
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class PaymentRead(BaseModel):
    id: UUID
    provider: PaymentProvider
    reference: str
    status: PaymentStatus
    status_detail: Optional[str]
    amount: Decimal
    amount_minor: int
    currency: str
    authorization_url: Optional[str]
    verified_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderRead(BaseModel):
    id: UUID
    order_number: str
    user_id: UUID | None
    status: OrderStatus
    payment_status: PaymentStatus
    currency: str
    subtotal_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    coupon_code: Optional[str]
    coupon_discount: Optional[Decimal]
    paid_at: Optional[datetime]
    shipped_at: Optional[datetime]
    delivered_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime] = None
    items: List[OrderItemRead] = Field(default_factory=list)
    payment: Optional[PaymentRead] = None

    model_config = ConfigDict(from_attributes=True)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
