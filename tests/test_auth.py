import pytest
from httpx import AsyncClient
from sqlalchemy.future import select

from app.models import Repairman, Shop, User
from app.utils.security import create_token, decode_token
from conftest import PASSWORD, auth


@pytest.mark.asyncio
async def test_root(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Repair Dispatch API is running"}


@pytest.mark.asyncio
async def test_register_verify_login_flow(client: AsyncClient, sms):
    response = await client.post(
        "/api/register",
        json={"name": "Ana", "email": "Ana@Example.com", "password": "hunter22", "phoneNumber": "+62 812-3456-789"},
    )
    assert response.status_code == 201
    body = response.json()
    user_id = body["userId"]
    assert body["phoneNumber"] == "+628123456789"

    # Not verified yet
    response = await client.post("/api/login", json={"email": "ana@example.com", "password": "hunter22"})
    assert response.status_code == 401
    assert response.json()["type"] == "AuthenticationError"

    to, code = sms.sent[-1]
    assert to == "+628123456789"

    response = await client.post("/api/verify-otp", json={"userId": user_id, "otp": "not-the-code"})
    assert response.status_code == 400

    response = await client.post("/api/verify-otp", json={"userId": user_id, "otp": code})
    assert response.status_code == 200
    assert response.json()["verified"] is True

    response = await client.post("/api/login", json={"email": "ana@example.com", "password": "hunter22"})
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["is_repairman"] is False
    assert body["user"]["has_shop"] is False
    identity = decode_token(body["token"])
    assert identity.user_id == user_id
    assert identity.role == "customer"


@pytest.mark.asyncio
async def test_complete_registration_supersedes_otp(client: AsyncClient, sms):
    response = await client.post("/api/register", json={"name": "Budi", "email": "budi@example.com", "password": "hunter22"})
    user_id = response.json()["userId"]
    assert sms.sent[-1][0] is None

    response = await client.post("/api/complete-registration", json={"userId": user_id, "phoneNumber": "+15550001111"})
    assert response.status_code == 200
    to, code = sms.sent[-1]
    assert to == "+15550001111"

    old_code = sms.sent[0][1]
    if old_code != code:
        response = await client.post("/api/verify-otp", json={"userId": user_id, "otp": old_code})
        assert response.status_code == 400

    response = await client.post("/api/verify-otp", json={"userId": user_id, "otp": code})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_register_missing_fields_and_duplicates(client: AsyncClient):
    response = await client.post("/api/register", json={"email": "x@example.com"})
    assert response.status_code == 400
    assert set(response.json()["missing"]) == {"name", "password"}

    payload = {"name": "Cici", "email": "cici@example.com", "password": "hunter22"}
    assert (await client.post("/api/register", json=payload)).status_code == 201
    response = await client.post("/api/register", json=payload)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, make_user):
    user, _ = await make_user("dodi")
    response = await client.post("/api/login", json={"email": user.email, "password": PASSWORD + "x"})
    assert response.status_code == 401
    response = await client.post("/api/login", json={"email": user.email, "password": PASSWORD})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_protected_routes_require_valid_token(client: AsyncClient):
    response = await client.get("/api/me")
    assert response.status_code == 401
    response = await client.get("/api/me", headers=auth("not-a-token"))
    assert response.status_code == 401
    assert response.json()["type"] == "AuthenticationError"


@pytest.mark.asyncio
async def test_expired_token_is_refused(client: AsyncClient, make_user):
    user, token = await make_user("u1")
    assert (await client.get("/api/me", headers=auth(token))).status_code == 200

    expired = create_token(user, expires_minutes=-1)
    response = await client.get("/api/me", headers=auth(expired))
    assert response.status_code == 401
    assert response.json()["error"] == "Token expired"


@pytest.mark.asyncio
async def test_become_and_resign_repairman_keep_flag_in_sync(client: AsyncClient, make_user, db_session):
    user, token = await make_user("eko")

    response = await client.post(
        "/api/become-repairman",
        json={"skills": ["tyres", "engine"], "services": {"patch tyre": 5.0}},
        headers=auth(token),
    )
    assert response.status_code == 201
    new_token = response.json()["token"]
    assert decode_token(new_token).is_repairman is True

    refreshed = await db_session.get(User, user.id, populate_existing=True)
    assert refreshed.is_repairman is True
    result = await db_session.execute(select(Repairman).filter(Repairman.user_id == user.id))
    assert result.scalars().first() is not None

    response = await client.post("/api/become-repairman", json={}, headers=auth(new_token))
    assert response.status_code == 409

    response = await client.get("/api/check-repairman", headers=auth(new_token))
    assert response.json()["isRepairman"] is True
    assert response.json()["repairman"]["skills"] == ["tyres", "engine"]

    response = await client.post("/api/resign-repairman", headers=auth(new_token))
    assert response.status_code == 200
    refreshed = await db_session.get(User, user.id, populate_existing=True)
    assert refreshed.is_repairman is False
    result = await db_session.execute(select(Repairman).filter(Repairman.user_id == user.id))
    assert result.scalars().first() is None


@pytest.mark.asyncio
async def test_changing_repairman_phone_resets_verification(client: AsyncClient, make_user):
    _, token = await make_user("fajar", is_repairman=True)
    response = await client.post("/api/edit-repairman", json={"phoneNumber": "+15559998888"}, headers=auth(token))
    assert response.status_code == 200
    assert response.json()["phoneNumber"] == "+15559998888"
    assert response.json()["verified"] is False


@pytest.mark.asyncio
async def test_one_shop_per_owner(client: AsyncClient, make_user, db_session):
    user, token = await make_user("gita")
    shop = {"name": "Gita Motor", "address": "Jl. Merdeka 1", "services": {"service": 20.0}}

    response = await client.post("/api/create-shop", json=shop, headers=auth(token))
    assert response.status_code == 201
    token = response.json()["token"]
    assert response.json()["user"]["has_shop"] is True

    response = await client.post("/api/create-shop", json=shop, headers=auth(token))
    assert response.status_code == 409

    response = await client.get("/api/get-all-shop", headers=auth(token))
    assert [s["name"] for s in response.json()["shops"]] == ["Gita Motor"]

    response = await client.post("/api/close-shop", headers=auth(token))
    assert response.status_code == 200
    assert (await db_session.get(User, user.id, populate_existing=True)).has_shop is False
    result = await db_session.execute(select(Shop).filter(Shop.owner_id == user.id))
    assert result.scalars().first() is None


@pytest.mark.asyncio
async def test_create_shop_requires_name_and_address(client: AsyncClient, make_user):
    _, token = await make_user("hadi")
    response = await client.post("/api/create-shop", json={"services": {}}, headers=auth(token))
    assert response.status_code == 400
    assert set(response.json()["missing"]) == {"name", "address"}
