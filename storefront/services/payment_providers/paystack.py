from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from storefront.core.config import settings
from storefront.core.logging import get_logger
from storefront.core.metrics import record_gateway_call
from storefront.services.payment_providers import (
    PaymentProviderConfigurationError,
    PaymentProviderRejectedError,
    PaymentProviderUnavailableError,
)

logger = get_logger(__name__)

# verification outcomes after which the transaction can no longer change
SUCCESS_STATUSES = frozenset({"success"})
FAILED_STATUSES = frozenset({"failed", "reversed"})


def _get_secret_key() -> str:
    token = settings.PAYSTACK_SECRET_KEY
    if not token:
        raise PaymentProviderConfigurationError("Paystack secret key is not configured")
    return token


def _headers() -> dict:
    return {
        "Authorization": f"Bearer {_get_secret_key()}",
        "Content-Type": "application/json",
    }


def _unwrap(response: httpx.Response) -> dict[str, Any]:
    if response.status_code >= 500:
        raise PaymentProviderUnavailableError(f"Paystack error {response.status_code}: {response.text}")
    try:
        body = response.json()
    except ValueError as exc:
        raise PaymentProviderUnavailableError("Paystack returned a non-JSON response") from exc
    if response.status_code >= 400 or not body.get("status"):
        raise PaymentProviderRejectedError(f"Paystack rejected the request: {body.get('message', response.text)}")
    return body.get("data") or {}


async def _request(operation: str, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
    headers = _headers()
    started = time.perf_counter()
    outcome = "error"
    try:
        async with httpx.AsyncClient(
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS,
        ) as client:
            response = await client.request(method, path, headers=headers, **kwargs)
        data = _unwrap(response)
        outcome = "ok"
        return data
    except httpx.TimeoutException as exc:
        outcome = "timeout"
        raise PaymentProviderUnavailableError(f"Paystack {operation} timed out") from exc
    except httpx.HTTPError as exc:
        raise PaymentProviderUnavailableError(f"Paystack connection error: {exc}") from exc
    finally:
        record_gateway_call(operation, outcome, time.perf_counter() - started)


async def initialize_transaction(
    *,
    email: str,
    amount_minor: int,
    reference: str,
    currency: str,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Start a hosted checkout. Returns ``authorization_url``, ``access_code`` and ``reference``."""
    payload: dict[str, Any] = {
        "email": email,
        "amount": int(amount_minor),
        "reference": reference,
        "currency": currency,
        "metadata": metadata or {},
    }
    if settings.PAYSTACK_CALLBACK_URL:
        payload["callback_url"] = settings.PAYSTACK_CALLBACK_URL

    data = await _request("initialize", "POST", "/transaction/initialize", json=payload)
    if not data.get("authorization_url"):
        raise PaymentProviderRejectedError("Paystack did not return an authorization URL")
    return data


async def verify_transaction(reference: str) -> dict[str, Any]:
    """Authoritative transaction state, retried on transient failures."""
    async for attempt in AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(settings.PAYMENT_VERIFY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type(PaymentProviderUnavailableError),
    ):
        with attempt:
            return await _request("verify", "GET", f"/transaction/verify/{reference}")
    raise PaymentProviderUnavailableError("Paystack verification did not run")


def verify_webhook_signature(body: bytes, signature: str | None) -> bool:
    """Paystack signs webhook bodies with HMAC-SHA512 of the secret key."""
    if not signature:
        return False
    secret = settings.PAYSTACK_WEBHOOK_SECRET or settings.PAYSTACK_SECRET_KEY
    if not secret:
        logger.error("Webhook received but no Paystack secret is configured")
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)
