# storefront/main.py
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi

from storefront.api.error_handlers import register_exception_handlers
from storefront.api.routers import admin, auth, cart, orders, payments
from storefront.core.config import settings
from storefront.core.logging import setup_logging
from storefront.core.metrics import export_metrics
from storefront.middleware import ObservabilityMiddleware

# --- Models registration (needed for metadata.create_all and Alembic) ---
import storefront.models.user      # noqa: F401
import storefront.models.product   # noqa: F401
import storefront.models.coupon    # noqa: F401
import storefront.models.cart      # noqa: F401
import storefront.models.order     # noqa: F401

setup_logging()

TAGS_METADATA = [
    {"name": "auth", "description": "Login, token refresh and the caller profile."},
    {"name": "cart", "description": "The caller's cart, its items and coupon."},
    {"name": "payments", "description": "Checkout initiation and gateway confirmations."},
    {"name": "orders", "description": "Order history and administrative status changes."},
    {"name": "admin", "description": "Order console, manual reconciliation and coupons."},
]

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    description=(
        "Order lifecycle API.\n\n"
        "- **Cart**: items, quantities and coupon discounts.\n"
        "- **Payments**: checkout against the payment gateway and idempotent confirmation.\n"
        "- **Orders**: status lifecycle from pending to delivered or cancelled.\n\n"
        "Use the **Authorize** button to try the protected endpoints."
    ),
    openapi_tags=TAGS_METADATA,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
    },
)

# --- Middlewares ---
app.add_middleware(ObservabilityMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL] if settings.FRONTEND_URL else ["*"],
    allow_credentials=bool(settings.FRONTEND_URL),
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# --- Routers ---
app.include_router(auth.router, prefix=settings.API_V1_STR)
app.include_router(cart.router, prefix=settings.API_V1_STR)
app.include_router(payments.router, prefix=settings.API_V1_STR)
app.include_router(orders.router, prefix=settings.API_V1_STR)
app.include_router(admin.router, prefix=settings.API_V1_STR)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        tags=TAGS_METADATA,
    )

    comps = openapi_schema.setdefault("components", {}).setdefault("securitySchemes", {})
    comps["BearerAuth"] = {
        "type": "http",
        "scheme": "bearer",
        "bearerFormat": "JWT",
        "description": "Paste your access token. Format: `Bearer <token>`",
    }
    openapi_schema["security"] = [{"BearerAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


@app.get("/metrics", include_in_schema=False)
def metrics():
    body, content_type = export_metrics()
    return Response(content=body, media_type=content_type)


@app.get("/", include_in_schema=False)
def root():
    return {"status": "ok", "docs_url": "/docs", "redoc_url": "/redoc"}
