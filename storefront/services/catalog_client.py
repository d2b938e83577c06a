from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.product import Product
from storefront.services.exceptions import DomainValidationError, ResourceNotFoundError


def as_uuid(value, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise DomainValidationError(f"Invalid UUID for {field}") from exc


async def get_product(db: AsyncSession, product_id) -> Product:
    """Return a sellable product or raise ``ResourceNotFoundError``."""
    product: Optional[Product] = await db.get(Product, as_uuid(product_id, "product_id"))
    if not product or not product.active:
        raise ResourceNotFoundError("Product not found")
    return product
