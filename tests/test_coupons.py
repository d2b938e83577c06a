from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient

from storefront.domain.enums import CouponKind
from storefront.models.coupon import Coupon
from storefront.services.coupon_service import compute_discount, ineligibility_reason


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


async def _apply(client: AsyncClient, token: str, code: str):
    return await client.post("/api/v1/carts/apply-coupon", json={"coupon": code}, headers=_auth(token))


def test_discount_is_clamped_to_the_subtotal():
    fixed = Coupon(code="BIG", kind=CouponKind.fixed, value=Decimal("500.00"), min_subtotal=Decimal("0"), active=True)
    percent = Coupon(code="TEN", kind=CouponKind.percentage, value=Decimal("10"), min_subtotal=Decimal("0"), active=True)

    assert compute_discount(fixed, Decimal("120.00")) == Decimal("120.00")
    assert compute_discount(percent, Decimal("250.00")) == Decimal("25.00")
    assert compute_discount(percent, Decimal("0.05")) == Decimal("0.01")


def test_ineligibility_reasons(utcnow):
    coupon = Coupon(code="X", kind=CouponKind.fixed, value=Decimal("5"), min_subtotal=Decimal("50"), active=True)
    assert ineligibility_reason(coupon, Decimal("60")) is None
    assert "at least" in ineligibility_reason(coupon, Decimal("49.99"))
    assert ineligibility_reason(coupon, Decimal("0")) == "Cart is empty"

    coupon.expires_at = utcnow - timedelta(minutes=1)
    assert ineligibility_reason(coupon, Decimal("60")) == "Coupon has expired"

    coupon.expires_at = None
    coupon.starts_at = utcnow + timedelta(days=1)
    assert ineligibility_reason(coupon, Decimal("60")) == "Coupon is not valid yet"

    coupon.starts_at = None
    coupon.redeemed_at = utcnow
    assert ineligibility_reason(coupon, Decimal("60")) == "Coupon has already been used"


@pytest.mark.asyncio
async def test_apply_percentage_coupon(client: AsyncClient, user_token: str, make_product, make_coupon):
    product = make_product(price="125.00")
    make_coupon("WELCOME10", kind=CouponKind.percentage, value="10")
    await _add(client, user_token, product.id, 2)

    resp = await _apply(client, user_token, " welcome10 ")
    assert resp.status_code == 200, resp.text
    cart = resp.json()
    assert cart["coupon_code"] == "WELCOME10"
    assert Decimal(cart["subtotal_amount"]) == Decimal("250.00")
    assert Decimal(cart["discount_amount"]) == Decimal("25.00")
    assert Decimal(cart["total_amount"]) == Decimal("225.00")


@pytest.mark.asyncio
async def test_second_coupon_is_a_conflict(client: AsyncClient, user_token: str, make_product, make_coupon):
    product = make_product(price="100.00")
    make_coupon("FIRST")
    make_coupon("SECOND")
    await _add(client, user_token, product.id, 1)

    assert (await _apply(client, user_token, "FIRST")).status_code == 200

    again = await _apply(client, user_token, "FIRST")
    assert again.status_code == 409
    assert again.json()["code"] == "coupon_already_applied"

    other = await _apply(client, user_token, "SECOND")
    assert other.status_code == 409

    removed = await client.delete("/api/v1/carts/coupon", headers=_auth(user_token))
    assert removed.status_code == 200
    assert removed.json()["coupon_code"] is None
    assert (await _apply(client, user_token, "SECOND")).status_code == 200


@pytest.mark.asyncio
async def test_invalid_coupons_are_rejected(
    client: AsyncClient, user_token: str, make_product, make_coupon, utcnow
):
    product = make_product(price="100.00")
    make_coupon("OLD", expires_at=utcnow - timedelta(days=1))
    make_coupon("BIGSPEND", kind=CouponKind.fixed, value="50", min_subtotal="200")
    make_coupon("OFF", active=False)

    empty = await _apply(client, user_token, "BIGSPEND")
    assert empty.status_code == 400

    await _add(client, user_token, product.id, 1)

    for code in ("NOPE", "OLD", "BIGSPEND", "OFF"):
        resp = await _apply(client, user_token, code)
        assert resp.status_code == 400, code
        assert resp.json()["code"] == "coupon_invalid"

    cart = (await client.get("/api/v1/carts", headers=_auth(user_token))).json()
    assert cart["coupon_code"] is None
    assert Decimal(cart["total_amount"]) == Decimal("100.00")


@pytest.mark.asyncio
async def test_coupon_is_detached_when_cart_drops_below_minimum(
    client: AsyncClient, user_token: str, make_product, make_coupon
):
    product = make_product(price="125.00")
    make_coupon("SAVE50", kind=CouponKind.fixed, value="50", min_subtotal="200")
    cart = await _add(client, user_token, product.id, 2)
    item_id = cart["items"][0]["id"]

    applied = await _apply(client, user_token, "SAVE50")
    assert Decimal(applied.json()["total_amount"]) == Decimal("200.00")

    resp = await client.patch(f"/api/v1/cart-items/{item_id}", json={"quantity": 1}, headers=_auth(user_token))
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["coupon_code"] is None
    assert body["coupon_removed"] == "SAVE50"
    assert Decimal(body["discount_amount"]) == Decimal("0")
    assert Decimal(body["total_amount"]) == Decimal("125.00")

    # coming back above the minimum does not silently re-attach it
    resp = await client.patch(f"/api/v1/cart-items/{item_id}", json={"quantity": 2}, headers=_auth(user_token))
    assert resp.json()["coupon_code"] is None
    assert resp.json()["coupon_removed"] is None


@pytest.mark.asyncio
async def test_coupon_attached_to_one_cart_only(
    client: AsyncClient, user_token: str, other_token: str, make_product, make_coupon
):
    product = make_product(price="80.00")
    make_coupon("SINGLE")
    await _add(client, user_token, product.id, 1)
    await _add(client, other_token, product.id, 1)

    assert (await _apply(client, user_token, "SINGLE")).status_code == 200
    resp = await _apply(client, other_token, "SINGLE")
    assert resp.status_code == 400
    assert resp.json()["code"] == "coupon_invalid"


@pytest.mark.asyncio
async def test_oversized_fixed_coupon_makes_total_zero(
    client: AsyncClient, user_token: str, make_product, make_coupon
):
    product = make_product(price="30.00")
    make_coupon("HUGE", kind=CouponKind.fixed, value="500")
    await _add(client, user_token, product.id, 1)

    resp = await _apply(client, user_token, "HUGE")
    assert resp.status_code == 200
    cart = resp.json()
    assert Decimal(cart["discount_amount"]) == Decimal("30.00")
    assert Decimal(cart["total_amount"]) == Decimal("0")
