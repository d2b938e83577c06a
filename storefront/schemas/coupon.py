from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from storefront.domain.enums import CouponKind


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=64)
    description: str | None = Field(default=None, max_length=255)
    kind: CouponKind
    value: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    min_subtotal: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()

    @model_validator(mode="after")
    def check_ranges(self) -> "CouponCreate":
        if self.kind == CouponKind.percentage and self.value > 100:
            raise ValueError("Percentage coupons cannot exceed 100")
        if self.starts_at and self.expires_at and self.expires_at <= self.starts_at:
            raise ValueError("expires_at must be after starts_at")
        return self


class CouponRead(BaseModel):
    id: UUID
    code: str
    description: str | None
    kind: CouponKind
    value: Decimal
    min_subtotal: Decimal
    starts_at: datetime | None
    expires_at: datetime | None
    active: bool
    redeemed_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
