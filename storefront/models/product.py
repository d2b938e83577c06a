import uuid
from decimal import Decimal

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Boolean, Numeric, DateTime, func, Integer, CheckConstraint

from storefront.db.session import Base
from storefront.db.types import GUID


class Product(Base):
    """Catalog entry as seen by the order engine: price and stock only.

    Catalog CRUD lives in another service; rows here are read for pricing and
    availability and written only through inventory reservations.
    """

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock_on_hand >= 0", name="ck_products_stock_on_hand_non_negative"),
        CheckConstraint("stock_reserved >= 0", name="ck_products_stock_reserved_non_negative"),
        CheckConstraint("stock_reserved <= stock_on_hand", name="ck_products_reserved_within_on_hand"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="KES", nullable=False)

    stock_on_hand: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stock_reserved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = mapped_column(DateTime(timezone=True), onupdate=func.now())

    @property
    def available_stock(self) -> int:
        return int(self.stock_on_hand) - int(self.stock_reserved)
