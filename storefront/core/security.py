from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Union
from uuid import uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext

from storefront.core.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
ALGORITHM = settings.JWT_ALGORITHM
_RESERVED_EXTRA_CLAIMS = {"sub", "exp", "type", "jti", "iat"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def _encode(subject: Union[str, int], token_type: str, lifetime: timedelta, secret: str, extra: dict[str, Any] | None) -> str:
    now = _now()
    payload: dict[str, Any] = {
        "sub": str(subject),
        "type": token_type,
        "exp": now + lifetime,
        "iat": int(now.timestamp()),
        "jti": uuid4().hex,
    }
    for key, value in (extra or {}).items():
        if key not in _RESERVED_EXTRA_CLAIMS:
            payload[key] = value
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def _decode_with_rotation(token: str, secrets: list[str]) -> dict[str, Any]:
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise JWTError("Invalid token header") from exc
    if header.get("alg") != ALGORITHM:
        raise JWTError("Token signed with unexpected algorithm")

    last_error: JWTError | None = None
    for secret in dict.fromkeys(s for s in secrets if s):
        try:
            return jwt.decode(token, secret, algorithms=[ALGORITHM])
        except JWTError as exc:
            last_error = exc
    raise last_error or JWTError("Unable to decode token with provided secrets")


def create_access_token(
    subject: Union[str, int],
    expires_minutes: int | None = None,
    extra: dict[str, Any] | None = None,
) -> str:
    lifetime = timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return _encode(subject, "access", lifetime, settings.SECRET_KEY, extra)


def create_refresh_token(
    subject: Union[str, int],
    expires_days: int | None = None,
    extra: dict[str, Any] | None = None,
) -> str:
    lifetime = timedelta(days=expires_days or settings.REFRESH_TOKEN_EXPIRE_DAYS)
    return _encode(subject, "refresh", lifetime, settings.refresh_secret_fallback, extra)


def decode_access_token(token: str) -> dict[str, Any]:
    data = _decode_with_rotation(token, [settings.SECRET_KEY, *settings.SECRET_KEY_FALLBACKS])
    if data.get("type") != "access":
        raise JWTError("Invalid token type")
    return data


def decode_refresh_token(token: str) -> dict[str, Any]:
    data = _decode_with_rotation(token, [settings.refresh_secret_fallback, *settings.SECRET_KEY_FALLBACKS])
    if data.get("type") != "refresh":
        raise JWTError("Invalid token type")
    return data
