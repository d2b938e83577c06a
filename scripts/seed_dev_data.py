"""Seed script for a development database: users, products and coupons."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

# Ensure project root is on PYTHONPATH when running as a script.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sqlalchemy import select

from storefront.core.config import settings
from storefront.db.session_async import AsyncSessionLocal
from storefront.domain.enums import CouponKind
from storefront.initial_data import create_initial_admin_user
from storefront.models.product import Product
from storefront.schemas.coupon import CouponCreate
from storefront.services import coupon_service, user_service


@dataclass(frozen=True, slots=True)
class DevUser:
    email: str
    full_name: str
    password: str
    is_superuser: bool = False


@dataclass(frozen=True, slots=True)
class DevProduct:
    sku: str
    name: str
    price: Decimal
    stock: int


DEV_USERS: tuple[DevUser, ...] = (
    DevUser(email="admin.dev@example.com", full_name="Dev Admin", password="AdminDev123!", is_superuser=True),
    DevUser(email="user1.dev@example.com", full_name="Dev Customer One", password="UserDev123!"),
    DevUser(email="user2.dev@example.com", full_name="Dev Customer Two", password="UserDev123!"),
)

DEV_PRODUCTS: tuple[DevProduct, ...] = (
    DevProduct(sku="SPICE-001", name="Pilau Masala 100g", price=Decimal("100.00"), stock=40),
    DevProduct(sku="SPICE-002", name="Chai Masala 50g", price=Decimal("50.00"), stock=60),
    DevProduct(sku="FLOUR-001", name="Maize Flour 2kg", price=Decimal("210.00"), stock=25),
    DevProduct(sku="OIL-001", name="Sunflower Oil 1L", price=Decimal("399.99"), stock=1),
)


def _dev_coupons() -> tuple[CouponCreate, ...]:
    now = datetime.now(timezone.utc)
    return (
        CouponCreate(code="WELCOME10", kind=CouponKind.percentage, value=Decimal("10"), description="10% off"),
        CouponCreate(
            code="SAVE50",
            kind=CouponKind.fixed,
            value=Decimal("50"),
            min_subtotal=Decimal("200"),
            description="50 off orders from 200",
        ),
        CouponCreate(
            code="EXPIRED5",
            kind=CouponKind.fixed,
            value=Decimal("5"),
            starts_at=now - timedelta(days=30),
            expires_at=now - timedelta(days=1),
        ),
    )


async def seed_dev_data() -> None:
    logger = logging.getLogger("seed_dev_data")
    logger.info("Seeding development data into %s", settings.ASYNC_DATABASE_URL)

    await create_initial_admin_user()

    async with AsyncSessionLocal() as session:
        for dev_user in DEV_USERS:
            if await user_service.get_by_email(session, dev_user.email):
                logger.debug("Skipped user %s", dev_user.email)
                continue
            await user_service.create_user(
                session,
                email=dev_user.email,
                password=dev_user.password,
                full_name=dev_user.full_name,
                is_superuser=dev_user.is_superuser,
            )
            logger.debug("Created user %s", dev_user.email)

        for dev_product in DEV_PRODUCTS:
            result = await session.execute(select(Product).where(Product.sku == dev_product.sku))
            if result.scalar_one_or_none():
                continue
            session.add(
                Product(
                    sku=dev_product.sku,
                    name=dev_product.name,
                    price=dev_product.price,
                    currency=settings.PAYMENT_CURRENCY,
                    stock_on_hand=dev_product.stock,
                    stock_reserved=0,
                )
            )

        for coupon in _dev_coupons():
            if await coupon_service.find_coupon(session, coupon.code):
                continue
            await coupon_service.create_coupon(session, coupon)

        await session.commit()

    logger.info("Seed completed")


async def main() -> None:
    await seed_dev_data()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
