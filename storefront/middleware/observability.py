from __future__ import annotations

import re
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from storefront.core.logging import get_logger, request_id_var
from storefront.core.metrics import normalize_path, record_request_metrics

REQUEST_ID_HEADER = "X-Request-ID"
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Request correlation id, latency metrics and structured error logs.

    An incoming ``X-Request-ID`` is reused when it looks sane (gateways and
    load balancers set one), otherwise a new id is generated. The id is echoed
    on the response and attached to every log line written while the request
    is handled.
    """

    def __init__(self, app, *, log_4xx: bool = True, log_5xx: bool = True, skip_paths=("/metrics",)) -> None:
        super().__init__(app)
        self.logger = get_logger("storefront.requests")
        self.log_4xx = log_4xx
        self.log_5xx = log_5xx
        self.skip_paths = frozenset(skip_paths)

    @staticmethod
    def _request_id(request: Request) -> str:
        incoming = request.headers.get(REQUEST_ID_HEADER)
        if incoming and _VALID_REQUEST_ID.match(incoming):
            return incoming
        return uuid.uuid4().hex

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = self._request_id(request)
        token = request_id_var.set(request_id)
        start = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception:
                duration = time.perf_counter() - start
                record_request_metrics(request, 500, duration)
                self._log(request, 500, duration, "Unhandled server error", "error")
                raise

            duration = time.perf_counter() - start
            status_code = response.status_code
            if request.url.path not in self.skip_paths:
                record_request_metrics(request, status_code, duration)

            if status_code >= 500 and self.log_5xx:
                self._log(request, status_code, duration, "Server error response", "error")
            elif status_code >= 400 and self.log_4xx:
                self._log(request, status_code, duration, "Client error response", "warning")

            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_id_var.reset(token)

    def _log(self, request: Request, status_code: int, duration: float, message: str, level: str) -> None:
        payload: dict[str, Any] = {
            "method": request.method,
            "path": normalize_path(request),
            "status_code": status_code,
            "duration_ms": round(duration * 1000, 3),
            "client_ip": self._client_ip(request),
            "user_agent": request.headers.get("user-agent"),
        }
        log_func = getattr(self.logger, level, self.logger.error)
        log_func(message, extra=payload)

    @staticmethod
    def _client_ip(request: Request) -> str | None:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        client = request.client
        return client.host if client else None
