import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.future import select

from app.database import persistence_guard
from app.errors import DispatchError, Forbidden, PersistenceError, ValidationError
from app.models.provider import Shop
from app.schemas.events import BookingRef, LocationUpdate, OrderRef
from app.schemas.job import OrderResponse
from app.schemas.message import MessageCreate, MessageResponse
from app.services.broadcaster import Broadcaster
from app.services.chat_service import ChatService
from app.services.connection_registry import (
    PROVIDER_GROUP,
    Connection,
    ConnectionRegistry,
    booking_room,
    order_room,
    shop_topic,
    user_topic,
)
from app.services.job_service import JobService
from app.utils.validators import require_fields

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Dict[str, Any]], Awaitable[None]]


class RealtimeGateway:
    """Routes client events from an admitted connection to the services.

    Any failure is reported back to the originating connection as an
    ``error`` event; the connection itself stays open.
    """

    def __init__(self, registry: ConnectionRegistry, session_factory, broadcaster: Optional[Broadcaster] = None):
        self.registry = registry
        self.session_factory = session_factory
        self.broadcaster = broadcaster or Broadcaster(registry)
        self._handlers: Dict[str, Handler] = {
            "ping": self.ping,
            "joinRepairmanChannel": self.join_repairman_channel,
            "leaveRepairmanChannel": self.leave_repairman_channel,
            "joinOrderRoom": self.join_order_room,
            "leaveOrderRoom": self.leave_order_room,
            "joinBookingRoom": self.join_booking_room,
            "acceptOrder": self.accept_order,
            "rejectOrder": self.reject_order,
            "cancelOrder": self.cancel_order,
            "acceptBooking": self.accept_booking,
            "rejectBooking": self.reject_booking,
            "cancelBooking": self.cancel_booking,
            "sendMessage": self.send_message,
            "repairmanLocationUpdate": self.location_update,
        }

    async def connect(self, conn: Connection) -> None:
        identity = conn.identity
        await self.registry.register(conn)
        await self.registry.join(conn, user_topic(identity.user_id))
        if identity.is_repairman:
            await self.registry.join(conn, PROVIDER_GROUP)
        if identity.has_shop:
            try:
                shop_id = await self._shop_of(identity.user_id)
            except PersistenceError as e:
                # Still admitted, without the shop topic
                self._error(conn, "connect", e)
            else:
                if shop_id is not None:
                    await self.registry.join(conn, shop_topic(shop_id))
        conn.deliver("connected", {"connectionId": conn.id, "userId": identity.user_id})

    @persistence_guard
    async def _shop_of(self, owner_id: int) -> Optional[int]:
        async with self.session_factory() as db:
            result = await db.execute(select(Shop.id).filter(Shop.owner_id == owner_id))
            return result.scalars().first()

    async def disconnect(self, conn: Connection) -> None:
        await self.registry.unregister(conn)

    async def handle(self, conn: Connection, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            self._error(conn, None, ValidationError("Frames must be JSON objects"))
            return
        if not isinstance(frame, dict):
            self._error(conn, None, ValidationError("Frames must be JSON objects"))
            return

        event = frame.get("event")
        data = frame.get("data") or {}
        handler = self._handlers.get(event)
        if handler is None:
            self._error(conn, event, ValidationError(f"Unknown event: {event}"))
            return
        if not isinstance(data, dict):
            self._error(conn, event, ValidationError("Event data must be an object"))
            return

        try:
            await handler(conn, data)
        except PydanticValidationError as e:
            fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
            self._error(conn, event, ValidationError("Malformed fields", fields=fields))
        except DispatchError as e:
            self._error(conn, event, e)
        except Exception:
            logger.exception("Unhandled error in %s for connection %s", event, conn.id)
            conn.deliver("error", {"type": "InternalError", "error": "Internal server error", "event": event})

    def _error(self, conn: Connection, event: Optional[str], error: DispatchError) -> None:
        logger.info("Event %s from %s failed: %s", event, conn.id, error.detail)
        conn.deliver("error", {**error.to_dict(), "event": event})

    # --- Rooms ---

    async def ping(self, conn: Connection, data: Dict[str, Any]) -> None:
        conn.deliver("pong", {})

    async def join_repairman_channel(self, conn: Connection, data: Dict[str, Any]) -> None:
        await self.registry.join(conn, PROVIDER_GROUP)
        conn.deliver("joinedRoom", {"room": PROVIDER_GROUP})

    async def leave_repairman_channel(self, conn: Connection, data: Dict[str, Any]) -> None:
        await self.registry.leave(conn, PROVIDER_GROUP)
        conn.deliver("leftRoom", {"room": PROVIDER_GROUP})

    async def join_order_room(self, conn: Connection, data: Dict[str, Any]) -> None:
        ref = OrderRef.model_validate(data)
        require_fields(ref, ["order_id"])
        room = order_room(ref.order_id)
        await self.registry.join(conn, room)
        conn.deliver("joinedRoom", {"room": room, "orderId": ref.order_id})

    async def leave_order_room(self, conn: Connection, data: Dict[str, Any]) -> None:
        ref = OrderRef.model_validate(data)
        require_fields(ref, ["order_id"])
        room = order_room(ref.order_id)
        await self.registry.leave(conn, room)
        conn.deliver("leftRoom", {"room": room, "orderId": ref.order_id})

    async def join_booking_room(self, conn: Connection, data: Dict[str, Any]) -> None:
        ref = BookingRef.model_validate(data)
        require_fields(ref, ["booking_id"])
        room = booking_room(ref.booking_id)
        await self.registry.join(conn, room)
        conn.deliver("joinedRoom", {"room": room, "bookingId": ref.booking_id})

    # --- Status changes ---

    async def accept_order(self, conn: Connection, data: Dict[str, Any]) -> None:
        order_id = self._order_id(data)
        async with self.session_factory() as db:
            order = await JobService(db, self.broadcaster).accept_order(conn.identity, order_id)
        conn.deliver(
            "acceptResult",
            {
                "success": True,
                "orderId": order.id,
                "repairmanId": order.repairman_id,
                "order": OrderResponse.model_validate(order).wire(),
            },
        )
        # Follow the order from now on
        await self.registry.join(conn, order_room(order.id))

    async def reject_order(self, conn: Connection, data: Dict[str, Any]) -> None:
        order_id = self._order_id(data)
        async with self.session_factory() as db:
            order = await JobService(db, self.broadcaster).reject_order(conn.identity, order_id)
        conn.deliver("rejectResult", {"success": True, "orderId": order.id})

    async def cancel_order(self, conn: Connection, data: Dict[str, Any]) -> None:
        order_id = self._order_id(data)
        async with self.session_factory() as db:
            order = await JobService(db, self.broadcaster).cancel_order(conn.identity, order_id)
        conn.deliver("cancelResult", {"success": True, "orderId": order.id})

    async def accept_booking(self, conn: Connection, data: Dict[str, Any]) -> None:
        booking_id = self._booking_id(data)
        async with self.session_factory() as db:
            booking = await JobService(db, self.broadcaster).accept_booking(conn.identity, booking_id)
        conn.deliver("acceptResult", {"success": True, "bookingId": booking.id})
        await self.registry.join(conn, booking_room(booking.id))

    async def reject_booking(self, conn: Connection, data: Dict[str, Any]) -> None:
        booking_id = self._booking_id(data)
        async with self.session_factory() as db:
            booking = await JobService(db, self.broadcaster).reject_booking(conn.identity, booking_id)
        conn.deliver("rejectResult", {"success": True, "bookingId": booking.id})

    async def cancel_booking(self, conn: Connection, data: Dict[str, Any]) -> None:
        booking_id = self._booking_id(data)
        async with self.session_factory() as db:
            booking = await JobService(db, self.broadcaster).cancel_booking(conn.identity, booking_id)
        conn.deliver("cancelResult", {"success": True, "bookingId": booking.id})

    # --- Chat and location ---

    async def send_message(self, conn: Connection, data: Dict[str, Any]) -> None:
        req = MessageCreate.model_validate(data)
        async with self.session_factory() as db:
            message = await ChatService(db, self.broadcaster).send_message(conn.identity, req)
        conn.deliver("messageAck", {"clientId": req.client_id, "message": MessageResponse.model_validate(message).wire()})

    async def location_update(self, conn: Connection, data: Dict[str, Any]) -> None:
        if not conn.identity.is_repairman:
            raise Forbidden("Only repairmen publish locations")
        update = LocationUpdate.model_validate(data)
        require_fields(update, ["order_id", "lat", "lng"])
        await self.broadcaster.location(update.order_id, update.lat, update.lng)

    @staticmethod
    def _order_id(data: Dict[str, Any]) -> int:
        ref = OrderRef.model_validate(data)
        require_fields(ref, ["order_id"])
        return ref.order_id

    @staticmethod
    def _booking_id(data: Dict[str, Any]) -> int:
        ref = BookingRef.model_validate(data)
        require_fields(ref, ["booking_id"])
        return ref.booking_id
