from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storefront.core.logging import get_logger
from storefront.services.exceptions import ServiceError

logger = get_logger(__name__)


def error_body(exc: ServiceError) -> dict:
    return {"detail": exc.detail, "code": exc.code, "retryable": exc.retryable}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning(
                "Upstream failure surfaced to client",
                extra={"path": request.url.path, "code": exc.code},
            )
        headers = {"Retry-After": "5"} if exc.retryable else None
        return JSONResponse(status_code=exc.status_code, content=error_body(exc), headers=headers)
