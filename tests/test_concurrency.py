import asyncio
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from storefront.core.locks import CartLocks
from storefront.models.cart import CartItem
from storefront.models.order import Order
from storefront.services.exceptions import CartBusyError


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_parallel_quantity_updates_leave_consistent_totals(
    client: AsyncClient, user_token: str, make_product, db_session
):
    product = make_product(price="10.00", stock=50)
    cart = (
        await client.post(
            "/api/v1/cart-items",
            json={"product_id": str(product.id), "quantity": 1},
            headers=_auth(user_token),
        )
    ).json()
    item_id = cart["items"][0]["id"]

    quantities = [3, 5, 7, 9, 11]
    responses = await asyncio.gather(
        *[
            client.patch(f"/api/v1/cart-items/{item_id}", json={"quantity": q}, headers=_auth(user_token))
            for q in quantities
        ]
    )
    assert all(r.status_code == 200 for r in responses)

    final = (await client.get("/api/v1/carts", headers=_auth(user_token))).json()
    assert len(final["items"]) == 1
    quantity = final["items"][0]["quantity"]
    assert quantity in quantities
    assert Decimal(final["subtotal_amount"]) == Decimal("10.00") * quantity
    assert Decimal(final["total_amount"]) == Decimal(final["subtotal_amount"])

    rows = db_session.execute(select(CartItem)).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_parallel_adds_of_the_same_product_merge(client: AsyncClient, user_token: str, make_product):
    product = make_product(price="2.50", stock=100)

    responses = await asyncio.gather(
        *[
            client.post(
                "/api/v1/cart-items",
                json={"product_id": str(product.id), "quantity": 2},
                headers=_auth(user_token),
            )
            for _ in range(5)
        ]
    )
    assert all(r.status_code == 201 for r in responses)

    final = (await client.get("/api/v1/carts", headers=_auth(user_token))).json()
    assert [i["quantity"] for i in final["items"]] == [10]
    assert Decimal(final["total_amount"]) == Decimal("25.00")


@pytest.mark.asyncio
async def test_parallel_checkouts_create_one_order(
    client: AsyncClient, user_token: str, make_product, gateway, db_session
):
    product = make_product(price="30.00", stock=5)
    await client.post(
        "/api/v1/cart-items",
        json={"product_id": str(product.id), "quantity": 2},
        headers=_auth(user_token),
    )

    responses = await asyncio.gather(
        *[client.post("/api/v1/payment/initiate", json={}, headers=_auth(user_token)) for _ in range(3)]
    )
    assert all(r.status_code == 200 for r in responses)
    assert len({r.json()["order_id"] for r in responses}) == 1
    assert len(db_session.execute(select(Order)).scalars().all()) == 1


@pytest.mark.asyncio
async def test_local_lock_gives_up_after_wait():
    locks = CartLocks(None, wait=0.05)

    async with locks.hold("user-1"):
        with pytest.raises(CartBusyError):
            async with locks.hold("user-1"):
                pass
        # other users are not blocked
        async with locks.hold("user-2"):
            pass
