from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from storefront.domain.enums import CouponKind, OrderStatus, PaymentStatus
from storefront.models.order import Order, Payment
from storefront.models.product import Product
from storefront.services.checkout_service import generate_order_number, generate_payment_reference
from storefront.services.payment_providers import PaymentProviderUnavailableError


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def _add(client: AsyncClient, token: str, product_id, quantity: int) -> dict:
    resp = await client.post(
        "/api/v1/cart-items",
        json={"product_id": str(product_id), "quantity": quantity},
        headers=_auth(token),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _initiate(client: AsyncClient, token: str, **body):
    return await client.post("/api/v1/payment/initiate", json=body, headers=_auth(token))


def test_identifiers_are_unique_and_prefixed():
    numbers = {generate_order_number() for _ in range(50)}
    references = {generate_payment_reference() for _ in range(50)}
    assert len(numbers) == 50 and all(n.startswith("ORD-") for n in numbers)
    assert len(references) == 50 and all(r.startswith("PAY-") for r in references)


@pytest.mark.asyncio
async def test_checkout_snapshots_cart_with_coupon(
    client: AsyncClient, user_token: str, normal_user, make_product, make_coupon, gateway, db_session
):
    lamp = make_product(price="100.00", stock=5, name="Desk lamp")
    bulb = make_product(price="50.00", stock=5, name="Bulb")
    make_coupon("WELCOME10", kind=CouponKind.percentage, value="10")
    await _add(client, user_token, lamp.id, 2)
    await _add(client, user_token, bulb.id, 1)
    await client.post("/api/v1/carts/apply-coupon", json={"coupon": "WELCOME10"}, headers=_auth(user_token))

    resp = await _initiate(client, user_token, amount=22500)
    assert resp.status_code == 200, resp.text
    handle = resp.json()
    assert handle["status"] is True
    assert handle["amount"] == 22500
    assert handle["order_id"].startswith("ORD-")
    assert handle["authorization_url"].endswith(handle["reference"])

    assert len(gateway.initialized) == 1
    call = gateway.initialized[0]
    assert call["amount_minor"] == 22500
    assert call["currency"] == "KES"
    assert call["email"] == normal_user.email
    assert call["metadata"]["order_id"] == handle["order_id"]

    order = db_session.execute(select(Order).where(Order.order_number == handle["order_id"])).scalar_one()
    assert order.status == OrderStatus.pending
    assert order.payment_status == PaymentStatus.pending
    assert order.subtotal_amount == Decimal("250.00")
    assert order.discount_amount == Decimal("25.00")
    assert order.total_amount == Decimal("225.00")
    assert order.coupon_code == "WELCOME10"
    assert sorted((i.unit_price, i.quantity, i.line_total) for i in order.items) == [
        (Decimal("50.00"), 1, Decimal("50.00")),
        (Decimal("100.00"), 2, Decimal("200.00")),
    ]
    assert order.payment.reference == handle["reference"]
    assert order.payment.amount_minor == 22500

    db_session.expire_all()
    assert [
        (p.stock_on_hand, p.stock_reserved) for p in (db_session.get(Product, lamp.id), db_session.get(Product, bulb.id))
    ] == [(5, 2), (5, 1)]

    # the cart is only cleared once the payment is confirmed
    cart = (await client.get("/api/v1/carts", headers=_auth(user_token))).json()
    assert len(cart["items"]) == 2
    assert cart["coupon_code"] == "WELCOME10"


@pytest.mark.asyncio
async def test_empty_cart_cannot_check_out(client: AsyncClient, user_token: str, gateway, db_session):
    resp = await _initiate(client, user_token)
    assert resp.status_code == 400
    assert resp.json()["code"] == "empty_cart"
    assert gateway.initialized == []
    assert db_session.execute(select(Order)).first() is None


@pytest.mark.asyncio
async def test_client_amount_must_match_server_total(
    client: AsyncClient, user_token: str, make_product, gateway, db_session
):
    product = make_product(price="99.99")
    await _add(client, user_token, product.id, 1)

    resp = await _initiate(client, user_token, amount=100)
    assert resp.status_code == 409
    assert resp.json()["code"] == "amount_mismatch"
    assert gateway.initialized == []
    assert db_session.execute(select(Order)).first() is None

    ok = await _initiate(client, user_token, amount=9999)
    assert ok.status_code == 200, ok.text


@pytest.mark.asyncio
async def test_zero_total_is_rejected(client: AsyncClient, user_token: str, make_product, make_coupon, gateway):
    product = make_product(price="30.00")
    make_coupon("FREE", kind=CouponKind.fixed, value="100")
    await _add(client, user_token, product.id, 1)
    await client.post("/api/v1/carts/apply-coupon", json={"coupon": "FREE"}, headers=_auth(user_token))

    resp = await _initiate(client, user_token)
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_amount"
    assert gateway.initialized == []


@pytest.mark.asyncio
async def test_gateway_failure_keeps_pending_snapshot(
    client: AsyncClient, user_token: str, make_product, gateway, db_session
):
    product = make_product(price="50.00", stock=4)
    await _add(client, user_token, product.id, 2)
    gateway.init_error = PaymentProviderUnavailableError("connect timeout")

    resp = await _initiate(client, user_token)
    assert resp.status_code == 502
    body = resp.json()
    assert body["code"] == "payment_initiation_failed"
    assert body["retryable"] is True
    assert resp.headers["Retry-After"] == "5"

    order = db_session.execute(select(Order)).scalar_one()
    assert order.status == OrderStatus.pending
    assert order.payment.status == PaymentStatus.pending
    assert order.payment.authorization_url is None
    assert "connect timeout" in order.payment.status_detail

    # retrying the same cart resumes the snapshot instead of reserving twice
    gateway.init_error = None
    retry = await _initiate(client, user_token)
    assert retry.status_code == 200, retry.text
    assert retry.json()["order_id"] == order.order_number
    assert retry.json()["reference"] != gateway.initialized[0]["reference"]

    db_session.expire_all()
    assert len(db_session.execute(select(Order)).scalars().all()) == 1
    stock = db_session.get(Product, product.id)
    assert stock.stock_reserved == 2


@pytest.mark.asyncio
async def test_repeated_checkout_returns_the_same_transaction(
    client: AsyncClient, user_token: str, make_product, gateway, db_session
):
    product = make_product(price="10.00", stock=10)
    await _add(client, user_token, product.id, 3)

    first = (await _initiate(client, user_token)).json()
    second = (await _initiate(client, user_token)).json()
    assert first == second
    assert len(gateway.initialized) == 1
    assert len(db_session.execute(select(Payment)).scalars().all()) == 1

    # a changed cart is a new checkout
    await _add(client, user_token, product.id, 1)
    third = (await _initiate(client, user_token)).json()
    assert third["order_id"] != first["order_id"]
    assert third["amount"] == 4000


@pytest.mark.asyncio
async def test_checkout_fails_when_stock_was_taken(
    client: AsyncClient, user_token: str, other_token: str, make_product, gateway
):
    product = make_product(price="20.00", stock=2)
    await _add(client, user_token, product.id, 2)
    await _add(client, other_token, product.id, 2)

    assert (await _initiate(client, user_token)).status_code == 200
    resp = await _initiate(client, other_token)
    assert resp.status_code == 400
    assert resp.json()["code"] == "insufficient_stock"
    assert len(gateway.initialized) == 1


@pytest.mark.asyncio
async def test_changed_cart_supersedes_the_pending_checkout(
    client: AsyncClient, user_token: str, make_product, gateway, db_session
):
    product = make_product(price="15.00", stock=2)
    await _add(client, user_token, product.id, 1)
    first = (await _initiate(client, user_token)).json()

    # the pending checkout's unit still counts as the customer's own
    await _add(client, user_token, product.id, 1)
    resp = await _initiate(client, user_token)
    assert resp.status_code == 200, resp.text
    second = resp.json()
    assert second["order_id"] != first["order_id"]
    assert second["amount"] == 3000

    db_session.expire_all()
    old = db_session.execute(select(Order).where(Order.order_number == first["order_id"])).scalar_one()
    assert old.status == OrderStatus.pending
    assert old.payment_status == PaymentStatus.failed
    assert old.payment.status == PaymentStatus.failed
    assert old.payment.status_detail == "superseded"
    assert old.holds_stock is False

    stock = db_session.get(Product, product.id)
    assert (stock.stock_on_hand, stock.stock_reserved) == (2, 2)


@pytest.mark.asyncio
async def test_coupon_in_another_open_checkout_is_refused(
    client: AsyncClient, user_token: str, other_token: str, make_product, make_coupon, gateway, db_session
):
    product = make_product(price="80.00", stock=10)
    make_coupon("ONCE", kind=CouponKind.fixed, value="20")

    await _add(client, user_token, product.id, 1)
    applied = await client.post("/api/v1/carts/apply-coupon", json={"coupon": "ONCE"}, headers=_auth(user_token))
    assert applied.status_code == 200, applied.text
    assert (await _initiate(client, user_token)).status_code == 200
    # detaching it from the cart does not take it out of the open checkout
    await client.delete("/api/v1/carts/coupon", headers=_auth(user_token))

    await _add(client, other_token, product.id, 1)
    applied = await client.post("/api/v1/carts/apply-coupon", json={"coupon": "ONCE"}, headers=_auth(other_token))
    assert applied.status_code == 200, applied.text

    resp = await _initiate(client, other_token)
    assert resp.status_code == 400
    assert resp.json()["code"] == "coupon_invalid"
    assert len(gateway.initialized) == 1
    assert len(db_session.execute(select(Order)).scalars().all()) == 1
