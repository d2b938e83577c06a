# storefront/schemas/user.py
from pydantic import BaseModel, EmailStr, ConfigDict
from typing import Optional, List
from uuid import UUID


class UserRead(BaseModel):
    id: UUID
    email: EmailStr
    full_name: str | None = None
    phone: str | None = None
    is_active: bool
    is_superuser: bool

    model_config = ConfigDict(from_attributes=True)


class TokenPayload(BaseModel):
    sub: str | None = None
    exp: Optional[int] = None
    iat: Optional[int] = None
    jti: Optional[str] = None
    type: Optional[str] = None
    scopes: Optional[List[str]] = None

    model_config = ConfigDict(extra="allow")
