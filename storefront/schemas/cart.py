# storefront/schemas/cart.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CartItemCreate(BaseModel):
    product_id: UUID
    # lower bound enforced by the cart service so every entry point gets the same error
    quantity: int


class CartItemUpdate(BaseModel):
    quantity: int


class ApplyCouponRequest(BaseModel):
    coupon: str = Field(..., min_length=1, max_length=64)


class CartItemRead(BaseModel):
    id: UUID
    product_id: UUID
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CartRead(BaseModel):
    id: UUID
    user_id: UUID
    currency: str

    items: List[CartItemRead] = Field(default_factory=list)
    coupon_code: str | None = None
    coupon_removed: str | None = Field(
        default=None,
        description="Code of a coupon detached by this mutation because the cart no longer qualifies.",
    )

    subtotal_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal

    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
