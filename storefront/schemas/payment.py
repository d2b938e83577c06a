from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field


class PaymentInitiateRequest(BaseModel):
    # advisory only: when present it must match the server-computed total
    amount: int | None = Field(default=None, ge=0, description="Expected total in minor units (e.g. cents).")
    email: EmailStr | None = Field(default=None, description="Payer contact; defaults to the account email.")


class PaymentHandle(BaseModel):
    status: bool = True
    authorization_url: str
    reference: str
    order_id: str
    amount: int


class PaymentCallbackResponse(BaseModel):
    status: bool
    order_id: str
    payment_status: str
    order_status: str
