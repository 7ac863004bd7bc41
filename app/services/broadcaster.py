"""Fan-out of request notices and status events.

Status changes are modelled as one ``JobEvent`` per transition; the wire
names (including both spellings of the cancel notice) are resolved here.
Delivery is at-most-once: the persisted row is the source of truth and
clients re-fetch it when they miss an event.
"""

import enum
import logging
from typing import Any, Dict, List, Optional, Tuple

from app.config import get_settings
from app.models.job import Booking, Order
from app.models.message import Message
from app.schemas.job import BookingSummary, OrderSummary
from app.schemas.message import MessageResponse
from app.services.connection_registry import (
    PROVIDER_GROUP,
    ConnectionRegistry,
    booking_room,
    order_room,
    shop_topic,
    user_topic,
)

logger = logging.getLogger(__name__)


class JobEvent(str, enum.Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ON_THE_WAY = "on_the_way"
    COMPLETED = "completed"
    CANCELED = "canceled"


ORDER_EVENT_NAMES: Dict[JobEvent, Tuple[str, ...]] = {
    JobEvent.ACCEPTED: ("orderAccepted",),
    JobEvent.REJECTED: ("orderRejected",),
    JobEvent.ON_THE_WAY: ("orderOnTheWay",),
    JobEvent.COMPLETED: ("orderCompleted",),
    JobEvent.CANCELED: ("orderCancelled", "orderCanceled"),
}

BOOKING_EVENT_NAMES: Dict[JobEvent, Tuple[str, ...]] = {
    JobEvent.ACCEPTED: ("bookingAccepted",),
    JobEvent.REJECTED: ("bookingRejected",),
    JobEvent.COMPLETED: ("bookingCompleted",),
    JobEvent.CANCELED: ("bookingCancelled", "bookingCanceled"),
}

# Other providers drop their stale copy of the request when these arrive
PROVIDER_VISIBLE = (JobEvent.ACCEPTED, JobEvent.REJECTED)


def _is_repairman(identity) -> bool:
    return identity.is_repairman


class Broadcaster:
    def __init__(self, registry: ConnectionRegistry, booking_scope: Optional[str] = None):
        self.registry = registry
        self.booking_scope = booking_scope or get_settings().BOOKING_BROADCAST_SCOPE

    async def new_order(self, order: Order) -> int:
        summary = OrderSummary.model_validate(order).wire()
        return await self.registry.publish(
            "newOrderRequest",
            summary,
            rooms=[PROVIDER_GROUP],
            where=_is_repairman,
        )

    async def new_booking(self, booking: Booking, owner_id: int) -> int:
        summary = BookingSummary.model_validate(booking).wire()
        if self.booking_scope == "global":
            return await self.registry.publish(
                "newBookingRequest", summary, where=lambda identity: identity.has_shop
            )
        return await self.registry.publish(
            "newBookingRequest", summary, rooms=[shop_topic(booking.shop_id), user_topic(owner_id)]
        )

    async def order_event(self, event: JobEvent, order: Order) -> int:
        payload: Dict[str, Any] = {"orderId": order.id, "status": order.status.value}
        if event is JobEvent.ACCEPTED:
            payload["repairmanId"] = order.repairman_id
        rooms: List[str] = [order_room(order.id), user_topic(order.user_id)]
        if order.repairman_id is not None:
            rooms.append(user_topic(order.repairman_id))
        where = None
        if event in PROVIDER_VISIBLE:
            rooms.append(PROVIDER_GROUP)
            where = _is_repairman
        return await self._emit(ORDER_EVENT_NAMES[event], payload, rooms, where)

    async def booking_event(self, event: JobEvent, booking: Booking, owner_id: int) -> int:
        payload: Dict[str, Any] = {
            "bookingId": booking.id,
            "shopId": booking.shop_id,
            "status": booking.status.value,
        }
        if event is JobEvent.ACCEPTED:
            payload["ownerId"] = owner_id
        rooms = [booking_room(booking.id), user_topic(booking.user_id), user_topic(owner_id)]
        if event in PROVIDER_VISIBLE:
            rooms.append(shop_topic(booking.shop_id))
        return await self._emit(BOOKING_EVENT_NAMES[event], payload, rooms)

    async def location(self, order_id: int, lat: float, lng: float) -> int:
        return await self.registry.publish(
            "locationUpdate", {"orderId": order_id, "lat": lat, "lng": lng}, rooms=[order_room(order_id)]
        )

    async def message(self, message: Message) -> int:
        return await self.registry.publish(
            "newMessage", MessageResponse.model_validate(message).wire(), rooms=[order_room(message.order_id)]
        )

    async def _emit(self, names: Tuple[str, ...], payload: Dict[str, Any], rooms: List[str], where=None) -> int:
        delivered = 0
        for name in names:
            delivered = await self.registry.publish(name, payload, rooms=rooms, where=where)
        return delivered
