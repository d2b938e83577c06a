import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_login_returns_token_pair(client: AsyncClient, normal_user):
    resp = await client.post(
        "/api/v1/auth/login",
        data={"username": normal_user.email, "password": "User1234"},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["access_token"] and body["refresh_token"]
    assert body["user"]["email"] == normal_user.email


@pytest.mark.asyncio
async def test_login_rejects_bad_password(client: AsyncClient, normal_user):
    resp = await client.post(
        "/api/v1/auth/login",
        data={"username": normal_user.email, "password": "wrong-password"},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_refresh_issues_a_working_access_token(client: AsyncClient, normal_user):
    login = await client.post(
        "/api/v1/auth/login",
        data={"username": normal_user.email, "password": "User1234"},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    refresh_token = login.json()["refresh_token"]

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
    assert resp.status_code == 200, resp.text
    access = resp.json()["access_token"]

    cart = await client.get("/api/v1/carts", headers={"Authorization": f"Bearer {access}"})
    assert cart.status_code == 200

    # access tokens cannot be used as refresh tokens
    bad = await client.post("/api/v1/auth/refresh", json={"refresh_token": login.json()["access_token"]})
    assert bad.status_code == 401


@pytest.mark.asyncio
async def test_inactive_user_is_locked_out(client: AsyncClient, normal_user, user_token: str, db_session):
    normal_user.is_active = False
    db_session.commit()

    resp = await client.get("/api/v1/carts", headers={"Authorization": f"Bearer {user_token}"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_health_and_metrics(client: AsyncClient):
    root = await client.get("/")
    assert root.json()["status"] == "ok"

    metrics = await client.get("/metrics")
    assert metrics.status_code == 200


@pytest.mark.asyncio
async def test_request_id_is_echoed_or_generated(client: AsyncClient):
    generated = await client.get("/")
    assert len(generated.headers["X-Request-ID"]) == 32

    echoed = await client.get("/", headers={"X-Request-ID": "lb-7f3a.1"})
    assert echoed.headers["X-Request-ID"] == "lb-7f3a.1"

    replaced = await client.get("/", headers={"X-Request-ID": "bad id/with spaces"})
    assert replaced.headers["X-Request-ID"] != "bad id/with spaces"


@pytest.mark.asyncio
async def test_me_returns_the_caller_profile(client: AsyncClient, normal_user, user_token: str):
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {user_token}"})
    assert resp.status_code == 200, resp.text
    assert resp.json()["email"] == normal_user.email

    anonymous = await client.get("/api/v1/auth/me")
    assert anonymous.status_code == 401
