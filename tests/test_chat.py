from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from app.services.chat_service import MessageInbox
from app.services.connection_registry import order_room
from conftest import auth, events


async def _order(client, token):
    response = await client.post(
        "/order/create",
        json={"address": "A", "vehicleType": "car", "complaint": "noise", "locationLat": 1.0, "locationLng": 2.0},
        headers=auth(token),
    )
    return response.json()["order"]


@pytest.mark.asyncio
async def test_message_round_trip(client: AsyncClient, make_user):
    customer, token = await make_user("u1")
    order = await _order(client, token)
    sent = {"orderId": order["id"], "senderId": customer.id, "senderRole": "customer", "message": "hello ✋"}

    response = await client.post("/api/messages", json=sent, headers=auth(token))
    assert response.status_code == 201
    stored = response.json()
    assert stored["id"] > 0
    assert stored["createdAt"]

    response = await client.get(f"/api/messages/{order['id']}", headers=auth(token))
    assert response.status_code == 200
    [fetched] = response.json()["messages"]
    for key in ("orderId", "senderId", "senderRole", "message"):
        assert fetched[key] == sent[key]
    assert isinstance(fetched["senderId"], int)


@pytest.mark.asyncio
async def test_phone_number_sender_fallback(client: AsyncClient, make_user):
    customer, token = await make_user("u1")
    order = await _order(client, token)
    sent = {"orderId": order["id"], "senderId": customer.phone_number, "senderRole": "customer", "message": "hi"}
    response = await client.post("/api/messages", json=sent, headers=auth(token))
    assert response.json()["senderId"] == customer.phone_number

    response = await client.get(f"/api/messages/{order['id']}", headers=auth(token))
    assert response.json()["messages"][0]["senderId"] == customer.phone_number


@pytest.mark.asyncio
async def test_cannot_send_as_someone_else(client: AsyncClient, make_user):
    customer, token = await make_user("u1")
    _, other_token = await make_user("u2")
    order = await _order(client, token)

    for sender in (customer.id, str(customer.id), customer.phone_number):
        sent = {"orderId": order["id"], "senderId": sender, "senderRole": "customer", "message": "not me"}
        response = await client.post("/api/messages", json=sent, headers=auth(other_token))
        assert response.status_code == 403
        assert response.json()["type"] == "Forbidden"

    response = await client.get(f"/api/messages/{order['id']}", headers=auth(token))
    assert response.json()["messages"] == []


@pytest.mark.asyncio
async def test_missing_fields_are_listed(client: AsyncClient, make_user):
    _, token = await make_user("u1")
    response = await client.post("/api/messages", json={"message": "hi"}, headers=auth(token))
    assert response.status_code == 400
    assert response.json()["type"] == "ValidationError"
    assert set(response.json()["missing"]) == {"orderId", "senderId", "senderRole"}


@pytest.mark.asyncio
async def test_message_for_unknown_order(client: AsyncClient, make_user):
    customer, token = await make_user("u1")
    sent = {"orderId": 42, "senderId": customer.id, "senderRole": "customer", "message": "hello"}
    response = await client.post("/api/messages", json=sent, headers=auth(token))
    assert response.status_code == 404
    response = await client.get("/api/messages/42", headers=auth(token))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_room_delivery_is_isolated(client: AsyncClient, make_user, connect):
    customer, token = await make_user("u1")
    other, other_token = await make_user("u2")
    order = await _order(client, token)
    other_order = await _order(client, other_token)

    member = await connect(other, rooms=[order_room(order["id"])])
    outsider = await connect(other, rooms=[order_room(other_order["id"])])
    # Sender never joined the room; the message is still stored and relayed
    sender = await connect(customer)

    sent = {"orderId": order["id"], "senderId": customer.id, "senderRole": "customer", "message": "hello"}
    response = await client.post("/api/messages", json=sent, headers=auth(token))
    assert response.status_code == 201

    delivered = events(member, "newMessage")
    assert len(delivered) == 1
    assert delivered[0]["id"] == response.json()["id"]
    assert events(outsider, "newMessage") == []
    assert events(sender, "newMessage") == []


@pytest.mark.asyncio
async def test_joining_twice_does_not_duplicate(client: AsyncClient, make_user, registry, connect):
    customer, token = await make_user("u1")
    order = await _order(client, token)
    conn = await connect(customer)
    assert await registry.join(conn, order_room(order["id"])) is True
    assert await registry.join(conn, order_room(order["id"])) is False

    sent = {"orderId": order["id"], "senderId": customer.id, "senderRole": "customer", "message": "once"}
    await client.post("/api/messages", json=sent, headers=auth(token))
    assert len(events(conn, "newMessage")) == 1


def test_inbox_drops_repeated_server_ids():
    inbox = MessageInbox()
    msg = {"id": 1, "senderId": "7", "message": "hi", "createdAt": "2024-01-01T10:00:00+00:00"}
    assert inbox.receive(msg) is True
    assert inbox.receive(dict(msg)) is False
    assert len(inbox.messages) == 1


def test_inbox_replaces_optimistic_copy_by_client_id():
    inbox = MessageInbox()
    inbox.add_local({"clientId": "c-1", "senderId": "7", "message": "hi"})
    assert inbox.receive({"id": 10, "clientId": "c-1", "senderId": "7", "message": "hi"}) is False
    [entry] = inbox.messages
    assert entry["id"] == 10
    assert entry["pending"] is False


def test_inbox_matches_echo_within_window():
    now = datetime.now(timezone.utc)
    inbox = MessageInbox(window=timedelta(seconds=5))
    inbox.add_local({"senderId": 7, "message": "on my way", "createdAt": now.isoformat()})

    echo = {"id": 3, "senderId": "7", "message": "on my way", "createdAt": (now + timedelta(seconds=2)).isoformat()}
    assert inbox.receive(echo) is False
    assert inbox.messages[0]["id"] == 3

    # Same text much later is a new message
    later = {"id": 4, "senderId": "7", "message": "on my way", "createdAt": (now + timedelta(minutes=5)).isoformat()}
    assert inbox.receive(later) is True
    assert len(inbox.messages) == 2
