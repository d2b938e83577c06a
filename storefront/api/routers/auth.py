from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_customer
from storefront.core.config import settings
from storefront.core.logging import get_logger, security_alert
from storefront.core.metrics import record_login_attempt
from storefront.core.security import create_access_token, create_refresh_token, decode_refresh_token
from storefront.db.operations import commit_async
from storefront.db.session_async import get_async_db
from storefront.models.user import User
from storefront.schemas.auth import RefreshRequest, TokenPair, TokenRefresh
from storefront.schemas.user import UserRead
from storefront.services.user_service import authenticate, touch_login

router = APIRouter(prefix="/auth", tags=["auth"])

auth_logger = get_logger("storefront.auth")


def _client_ip(request: Request | None) -> str | None:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    client = request.client
    return client.host if client else None


def _get_user_scopes(user: User) -> list[str]:
    user_scopes = ["users:me", "cart:write", "orders:read", "orders:write"]
    if user.is_superuser:
        user_scopes.append("admin")
    return user_scopes


@router.post("/login", response_model=TokenPair)
async def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_async_db),
):
    user = await authenticate(db, form_data.username, form_data.password)
    if not user:
        record_login_attempt("failure")
        security_alert(
            "Failed login attempt",
            email=form_data.username,
            client_ip=_client_ip(request),
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Incorrect email or password",
        )

    record_login_attempt("success")
    user_scopes = _get_user_scopes(user)
    access = create_access_token(subject=user.id, extra={"scopes": user_scopes})
    refresh = create_refresh_token(subject=user.id, extra={"scopes": user_scopes})

    touch_login(user)
    await commit_async(db)

    auth_logger.info(
        "User authenticated",
        extra={"user_id": str(user.id), "client_ip": _client_ip(request)},
    )

    return {
        "access_token": access,
        "refresh_token": refresh,
        "token_type": "bearer",
        "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        "user": UserRead.model_validate(user),
    }


@router.post("/refresh", response_model=TokenRefresh)
async def refresh_token(payload: RefreshRequest):
    try:
        data = decode_refresh_token(payload.refresh_token)
        user_id = data["sub"]
        token_scopes = data.get("scopes", []) or []
    except (JWTError, KeyError) as exc:
        security_alert("Refresh token validation failed", reason=str(exc))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
        ) from exc

    new_access = create_access_token(subject=user_id, extra={"scopes": token_scopes})
    return {
        "access_token": new_access,
        "token_type": "bearer",
        "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    }


@router.get("/me", response_model=UserRead)
async def read_me(current_user: User = Depends(get_current_customer)):
    return current_user
