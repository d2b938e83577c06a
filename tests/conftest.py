# tests/conftest.py
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import os
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Generator

import pytest
import pytest_asyncio
import httpx
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.ext.asyncio import AsyncSession

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-storefront")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ASYNC_DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_storefront")
os.environ.setdefault("PAYMENT_CURRENCY", "KES")
os.environ["RECONCILE_RETRY_ENABLED"] = "false"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["REDIS_URL"] = ""

from storefront.main import app
from storefront.db.session import Base
from storefront.db.session_async import AsyncSessionLocal
from storefront.core.security import get_password_hash
from storefront.domain.enums import CouponKind
from storefront.models.coupon import Coupon
from storefront.models.product import Product
from storefront.models.user import User
from storefront.services import email_service
from storefront.services.payment_providers import paystack

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

sync_engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)


# ---------- Database ----------

@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create the schema once per test session."""
    Base.metadata.create_all(bind=sync_engine)
    yield
    Base.metadata.drop_all(bind=sync_engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with sync_engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Short-lived sync session for arranging data and asserting on it."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest_asyncio.fixture(scope="function")
async def client():
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def async_db_session() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.rollback()


# ---------- Users & tokens ----------

def _create_user(db_session: Session, prefix: str, password: str, *, is_superuser: bool = False) -> User:
    user = User(
        email=f"{prefix}-{uuid.uuid4()}@example.com",
        full_name=f"Test {prefix.title()}",
        hashed_password=get_password_hash(password),
        is_superuser=is_superuser,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


async def _login(client: httpx.AsyncClient, email: str, password: str) -> str:
    resp = await client.post(
        "/api/v1/auth/login",
        data={"username": email, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["access_token"]


@pytest.fixture(scope="function")
def admin_user(db_session: Session) -> User:
    return _create_user(db_session, "admin", "Admin1234", is_superuser=True)


@pytest.fixture(scope="function")
def normal_user(db_session: Session) -> User:
    return _create_user(db_session, "user", "User1234")


@pytest.fixture(scope="function")
def other_user(db_session: Session) -> User:
    return _create_user(db_session, "other", "Other1234")


@pytest_asyncio.fixture(scope="function")
async def admin_token(client: httpx.AsyncClient, admin_user: User) -> str:
    return await _login(client, admin_user.email, "Admin1234")


@pytest_asyncio.fixture(scope="function")
async def user_token(client: httpx.AsyncClient, normal_user: User) -> str:
    return await _login(client, normal_user.email, "User1234")


@pytest_asyncio.fixture(scope="function")
async def other_token(client: httpx.AsyncClient, other_user: User) -> str:
    return await _login(client, other_user.email, "Other1234")


# ---------- Catalog & coupons ----------

@pytest.fixture(scope="function")
def make_product(db_session: Session):
    def _make(price="100.00", stock=10, *, name=None, currency="KES", active=True) -> Product:
        product = Product(
            name=name or f"Product {uuid.uuid4().hex[:6]}",
            sku=f"SKU-{uuid.uuid4().hex[:12]}",
            price=Decimal(str(price)),
            currency=currency,
            stock_on_hand=stock,
            stock_reserved=0,
            active=active,
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make


@pytest.fixture(scope="function")
def make_coupon(db_session: Session):
    def _make(
        code=None,
        *,
        kind=CouponKind.percentage,
        value="10",
        min_subtotal="0",
        expires_at: datetime | None = None,
        starts_at: datetime | None = None,
        active=True,
    ) -> Coupon:
        coupon = Coupon(
            code=(code or f"C{uuid.uuid4().hex[:8]}").upper(),
            kind=kind,
            value=Decimal(str(value)),
            min_subtotal=Decimal(str(min_subtotal)),
            starts_at=starts_at,
            expires_at=expires_at,
            active=active,
        )
        db_session.add(coupon)
        db_session.commit()
        db_session.refresh(coupon)
        return coupon

    return _make


@pytest.fixture(scope="function")
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- External services ----------

class FakeGateway:
    """In-memory stand-in for the Paystack initialize/verify endpoints."""

    def __init__(self):
        self.initialized: list[dict] = []
        self.verified: list[str] = []
        self.amounts: dict[str, tuple[int, str]] = {}
        self.verdicts: dict[str, object] = {}
        self.init_error: Exception | None = None

    async def initialize_transaction(self, *, email, amount_minor, reference, currency, metadata=None):
        self.initialized.append(
            {
                "email": email,
                "amount_minor": amount_minor,
                "reference": reference,
                "currency": currency,
                "metadata": metadata,
            }
        )
        if self.init_error is not None:
            raise self.init_error
        self.amounts[reference] = (amount_minor, currency)
        return {
            "authorization_url": f"https://checkout.paystack.test/{reference}",
            "access_code": f"AC-{reference[-8:]}",
            "reference": reference,
        }

    def set_verdict(self, reference: str, status: str, *, amount: int | None = None, currency: str | None = None):
        known_amount, known_currency = self.amounts.get(reference, (0, "KES"))
        self.verdicts[reference] = {
            "status": status,
            "reference": reference,
            "amount": known_amount if amount is None else amount,
            "currency": currency or known_currency,
        }

    def fail_with(self, reference: str, error: Exception):
        self.verdicts[reference] = error

    async def verify_transaction(self, reference):
        self.verified.append(reference)
        verdict = self.verdicts.get(reference)
        if isinstance(verdict, Exception):
            raise verdict
        if verdict is None:
            self.set_verdict(reference, "success")
            verdict = self.verdicts[reference]
        return dict(verdict)


@pytest.fixture(scope="function")
def gateway(monkeypatch) -> FakeGateway:
    fake = FakeGateway()
    monkeypatch.setattr(paystack, "initialize_transaction", fake.initialize_transaction)
    monkeypatch.setattr(paystack, "verify_transaction", fake.verify_transaction)
    return fake


@pytest.fixture(scope="function")
def outbox(monkeypatch) -> list:
    sent: list = []

    def _capture(to_email, subject, body):
        sent.append({"to": to_email, "subject": subject, "body": body})

    monkeypatch.setattr(email_service, "_enqueue_email", _capture)
    return sent
