import uuid
from decimal import Decimal

import pytest
from httpx import AsyncClient


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def _add(client: AsyncClient, token: str, product_id, quantity: int):
    return await client.post(
        "/api/v1/cart-items",
        json={"product_id": str(product_id), "quantity": quantity},
        headers=_auth(token),
    )


@pytest.mark.asyncio
async def test_empty_cart_is_created_on_first_read(client: AsyncClient, user_token: str, normal_user):
    resp = await client.get("/api/v1/carts", headers=_auth(user_token))
    assert resp.status_code == 200, resp.text
    cart = resp.json()
    assert cart["user_id"] == str(normal_user.id)
    assert cart["items"] == []
    assert Decimal(cart["total_amount"]) == Decimal("0")

    again = await client.get("/api/v1/carts", headers=_auth(user_token))
    assert again.json()["id"] == cart["id"]


@pytest.mark.asyncio
async def test_add_item_and_increment(client: AsyncClient, user_token: str, make_product):
    product = make_product(price="120.50", stock=5)

    first = await _add(client, user_token, product.id, 2)
    assert first.status_code == 201, first.text
    body = first.json()
    assert len(body["items"]) == 1
    assert Decimal(body["items"][0]["line_total"]) == Decimal("241.00")
    assert Decimal(body["subtotal_amount"]) == Decimal("241.00")

    second = await _add(client, user_token, product.id, 1)
    assert second.status_code == 201, second.text
    body = second.json()
    assert len(body["items"]) == 1
    assert body["items"][0]["quantity"] == 3
    assert Decimal(body["total_amount"]) == Decimal("361.50")


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, -2])
async def test_quantity_below_one_is_rejected(client: AsyncClient, user_token: str, make_product, quantity):
    product = make_product()
    resp = await _add(client, user_token, product.id, quantity)
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_quantity"


@pytest.mark.asyncio
async def test_stock_is_checked_against_accumulated_quantity(client: AsyncClient, user_token: str, make_product):
    product = make_product(stock=3)

    assert (await _add(client, user_token, product.id, 2)).status_code == 201
    resp = await _add(client, user_token, product.id, 2)
    assert resp.status_code == 400
    assert resp.json()["code"] == "insufficient_stock"

    cart = (await client.get("/api/v1/carts", headers=_auth(user_token))).json()
    assert cart["items"][0]["quantity"] == 2


@pytest.mark.asyncio
async def test_unknown_and_inactive_products(client: AsyncClient, user_token: str, make_product):
    missing = await _add(client, user_token, uuid.uuid4(), 1)
    assert missing.status_code == 404

    inactive = make_product(active=False)
    resp = await _add(client, user_token, inactive.id, 1)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_mixed_currencies_are_rejected(client: AsyncClient, user_token: str, make_product):
    kes = make_product(currency="KES")
    usd = make_product(currency="USD")

    assert (await _add(client, user_token, kes.id, 1)).status_code == 201
    resp = await _add(client, user_token, usd.id, 1)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_set_quantity_and_remove(client: AsyncClient, user_token: str, make_product):
    apples = make_product(price="10.00", stock=20)
    pears = make_product(price="4.25", stock=20)
    await _add(client, user_token, apples.id, 1)
    cart = (await _add(client, user_token, pears.id, 2)).json()
    apple_item = next(i for i in cart["items"] if i["product_id"] == str(apples.id))

    patched = await client.patch(
        f"/api/v1/cart-items/{apple_item['id']}",
        json={"quantity": 4},
        headers=_auth(user_token),
    )
    assert patched.status_code == 200, patched.text
    assert Decimal(patched.json()["subtotal_amount"]) == Decimal("48.50")

    zero = await client.patch(
        f"/api/v1/cart-items/{apple_item['id']}",
        json={"quantity": 0},
        headers=_auth(user_token),
    )
    assert zero.status_code == 400
    assert zero.json()["code"] == "invalid_quantity"

    too_many = await client.patch(
        f"/api/v1/cart-items/{apple_item['id']}",
        json={"quantity": 21},
        headers=_auth(user_token),
    )
    assert too_many.status_code == 400
    assert too_many.json()["code"] == "insufficient_stock"

    removed = await client.delete(f"/api/v1/cart-items/{apple_item['id']}", headers=_auth(user_token))
    assert removed.status_code == 200
    body = removed.json()
    assert [i["product_id"] for i in body["items"]] == [str(pears.id)]
    assert Decimal(body["total_amount"]) == Decimal("8.50")


@pytest.mark.asyncio
async def test_items_of_another_cart_are_not_found(
    client: AsyncClient, user_token: str, other_token: str, make_product
):
    product = make_product()
    cart = (await _add(client, user_token, product.id, 1)).json()
    item_id = cart["items"][0]["id"]

    patched = await client.patch(
        f"/api/v1/cart-items/{item_id}", json={"quantity": 2}, headers=_auth(other_token)
    )
    assert patched.status_code == 404

    deleted = await client.delete(f"/api/v1/cart-items/{item_id}", headers=_auth(other_token))
    assert deleted.status_code == 404

    mine = (await client.get("/api/v1/carts", headers=_auth(user_token))).json()
    assert mine["items"][0]["quantity"] == 1


@pytest.mark.asyncio
async def test_cart_requires_authentication(client: AsyncClient):
    resp = await client.get("/api/v1/carts")
    assert resp.status_code == 401

    resp = await client.get("/api/v1/carts", headers=_auth("not-a-token"))
    assert resp.status_code == 401
