import pytest
from httpx import AsyncClient
from sqlalchemy.future import select

from app.models import Booking, Shop
from app.services.broadcaster import Broadcaster
from app.services.connection_registry import booking_room, shop_topic, user_topic
from conftest import auth, events

BOOKING = {"datetime": "2026-11-02T10:30:00+00:00", "issue": "brakes squeal", "vehicle": {"type": "car", "brand": "Fiat"}}


async def _shop_of(db_session, owner):
    result = await db_session.execute(select(Shop).filter(Shop.owner_id == owner.id))
    return result.scalars().first()


async def _create_booking(client, token, shop_id, **overrides):
    response = await client.post("/book/create", json={**BOOKING, "shopId": shop_id, **overrides}, headers=auth(token))
    assert response.status_code == 201, response.text
    return response.json()["booking"]


@pytest.mark.asyncio
async def test_booking_request_reaches_only_the_shop(client: AsyncClient, make_user, connect, db_session):
    customer, customer_token = await make_user("u1")
    owner, _ = await make_user("garage", has_shop=True)
    rival, _ = await make_user("rival", has_shop=True)
    shop = await _shop_of(db_session, owner)
    rival_shop = await _shop_of(db_session, rival)

    owner_conn = await connect(owner, rooms=[shop_topic(shop.id)])
    rival_conn = await connect(rival, rooms=[shop_topic(rival_shop.id)])

    booking = await _create_booking(client, customer_token, shop.id)
    assert booking["status"] == "pending"
    assert booking["datetime"].startswith("2026-11-02T10:30")
    assert booking["vehicle"] == {"type": "car", "brand": "Fiat"}

    [notice] = events(owner_conn, "newBookingRequest")
    assert notice["bookingId"] == booking["id"]
    assert notice["shopId"] == shop.id
    assert notice["issue"] == "brakes squeal"
    assert "datetime" in notice
    assert events(rival_conn) == []


@pytest.mark.asyncio
async def test_global_scope_reaches_every_shop_owner(client: AsyncClient, registry, make_user, connect, db_session):
    customer, customer_token = await make_user("u1")
    owner, _ = await make_user("garage", has_shop=True)
    rival, _ = await make_user("rival", has_shop=True)
    shop = await _shop_of(db_session, owner)
    booking = await _create_booking(client, customer_token, shop.id)

    customer_conn = await connect(customer)
    owner_conn = await connect(owner)
    rival_conn = await connect(rival)

    row = await db_session.get(Booking, booking["id"])
    delivered = await Broadcaster(registry, booking_scope="global").new_booking(row, owner.id)
    assert delivered == 2
    assert len(events(owner_conn, "newBookingRequest")) == 1
    assert len(events(rival_conn, "newBookingRequest")) == 1
    assert events(customer_conn) == []


@pytest.mark.asyncio
async def test_only_the_owner_decides(client: AsyncClient, make_user, connect, db_session):
    customer, customer_token = await make_user("u1")
    owner, owner_token = await make_user("garage", has_shop=True)
    _, rival_token = await make_user("rival", has_shop=True)
    shop = await _shop_of(db_session, owner)
    booking = await _create_booking(client, customer_token, shop.id)

    customer_conn = await connect(customer, rooms=[user_topic(customer.id)])

    for action in ("accept", "reject"):
        response = await client.post(f"/booking/{action}/{booking['id']}", headers=auth(rival_token))
        assert response.status_code == 403
        assert response.json()["type"] == "Forbidden"
    response = await client.post(f"/booking/accept/{booking['id']}", headers=auth(customer_token))
    assert response.status_code == 403

    response = await client.post(f"/booking/accept/{booking['id']}", headers=auth(owner_token))
    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "accepted"
    assert response.json()["booking"]["acceptedAt"] is not None

    assert events(customer_conn, "bookingAccepted") == [
        {"bookingId": booking["id"], "shopId": shop.id, "status": "accepted", "ownerId": owner.id}
    ]

    # Already decided
    response = await client.post(f"/booking/reject/{booking['id']}", headers=auth(owner_token))
    assert response.status_code == 409
    assert response.json()["type"] == "InvalidTransition"

    response = await client.post(f"/booking/complete/{booking['id']}", headers=auth(owner_token))
    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "completed"


@pytest.mark.asyncio
async def test_booking_cancel_emits_both_spellings(client: AsyncClient, make_user, connect, db_session):
    _, customer_token = await make_user("u1")
    owner, _ = await make_user("garage", has_shop=True)
    shop = await _shop_of(db_session, owner)
    booking = await _create_booking(client, customer_token, shop.id)

    watcher = await connect(owner, rooms=[booking_room(booking["id"])])
    response = await client.post(f"/booking/cancel/{booking['id']}", headers=auth(customer_token))
    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "canceled"

    names = [f["event"] for f in watcher.pending()]
    assert names.count("bookingCancelled") == 1
    assert names.count("bookingCanceled") == 1


@pytest.mark.asyncio
async def test_booking_validation(client: AsyncClient, make_user, db_session):
    _, customer_token = await make_user("u1")
    owner, _ = await make_user("garage", has_shop=True)
    shop = await _shop_of(db_session, owner)

    response = await client.post("/book/create", json={"shopId": shop.id}, headers=auth(customer_token))
    assert response.status_code == 400
    assert set(response.json()["missing"]) == {"datetime", "issue"}

    response = await client.post("/book/create", json={**BOOKING, "shopId": 9999}, headers=auth(customer_token))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_booking_listings(client: AsyncClient, make_user, db_session):
    _, customer_token = await make_user("u1")
    _, other_token = await make_user("u2")
    owner, owner_token = await make_user("garage", has_shop=True)
    _, plain_token = await make_user("plain")
    shop = await _shop_of(db_session, owner)

    later = await _create_booking(client, customer_token, shop.id)
    earlier = await _create_booking(client, customer_token, shop.id, datetime="2026-11-01T09:00:00+00:00")
    await _create_booking(client, other_token, shop.id)

    response = await client.get("/api/bookings", headers=auth(customer_token))
    assert [b["id"] for b in response.json()["bookings"]] == [earlier["id"], later["id"]]

    response = await client.get("/api/shop/bookings", headers=auth(owner_token))
    assert len(response.json()["bookings"]) == 3

    response = await client.get("/api/shop/bookings", headers=auth(plain_token))
    assert response.status_code == 404

    response = await client.get(f"/api/booking/{later['id']}", headers=auth(owner_token))
    assert response.json()["booking"]["datetime"].startswith("2026-11-02T10:30")
    response = await client.get(f"/api/booking/{later['id']}", headers=auth(other_token))
    assert response.status_code == 403
