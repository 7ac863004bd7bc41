import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Tuple, Type, Union

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.database import persistence_guard
from app.errors import AlreadyTaken, Conflict, Forbidden, InvalidTransition, NotFound
from app.models.job import Booking, JobStatus, Order
from app.models.provider import Shop
from app.models.user import User
from app.schemas.job import BookingCreate, OrderCreate
from app.services.broadcaster import Broadcaster, JobEvent
from app.utils.security import Identity
from app.utils.validators import require_fields

logger = logging.getLogger(__name__)

Job = Union[Order, Booking]


class Transition(NamedTuple):
    sources: FrozenSet[JobStatus]
    target: JobStatus
    stamp: Optional[str]
    event: JobEvent


TRANSITIONS: Dict[str, Transition] = {
    "accept": Transition(frozenset({JobStatus.PENDING}), JobStatus.ACCEPTED, "accepted_at", JobEvent.ACCEPTED),
    "reject": Transition(frozenset({JobStatus.PENDING}), JobStatus.REJECTED, "rejected_at", JobEvent.REJECTED),
    "start": Transition(frozenset({JobStatus.ACCEPTED}), JobStatus.ON_THE_WAY, None, JobEvent.ON_THE_WAY),
    "finish": Transition(
        frozenset({JobStatus.ACCEPTED, JobStatus.ON_THE_WAY}), JobStatus.COMPLETED, "completed_at", JobEvent.COMPLETED
    ),
    "cancel": Transition(
        frozenset({JobStatus.PENDING, JobStatus.ACCEPTED}), JobStatus.CANCELED, "canceled_at", JobEvent.CANCELED
    ),
}


class JobService:
    """Orders and bookings: creation, the status state machine and the acceptance race.

    Every status change is a single conditional UPDATE guarded by the allowed
    source statuses, so concurrent attempts on one record succeed at most once.
    """

    def __init__(self, db: AsyncSession, broadcaster: Optional[Broadcaster] = None):
        self.db = db
        self.broadcaster = broadcaster

    # --- Creation ---

    @persistence_guard
    async def create_order(self, identity: Identity, req: OrderCreate) -> Order:
        require_fields(req, ["address", "location_lat", "location_lng", "vehicle_type", "complaint"])

        # Only one open search per requester
        result = await self.db.execute(
            select(Order.id).filter(Order.user_id == identity.user_id, Order.status == JobStatus.PENDING)
        )
        active_id = result.scalars().first()
        if active_id is not None:
            raise Conflict("You already have an active order request", orderId=active_id)

        order = Order(
            user_id=identity.user_id,
            address=req.address.strip(),
            location_lat=req.location_lat,
            location_lng=req.location_lng,
            vehicle_type=req.vehicle_type,
            vehicle_brand=req.vehicle_brand,
            vehicle_model=req.vehicle_model,
            vehicle_year=req.vehicle_year,
            complaint=req.complaint.strip(),
            service_id=req.service_id,
            estimated_price=req.estimated_price,
            status=JobStatus.PENDING,
        )
        self.db.add(order)
        await self.db.commit()
        await self.db.refresh(order)
        logger.info("Order %s created by user %s", order.id, identity.user_id)

        if self.broadcaster:
            await self.broadcaster.new_order(order)
        return order

    @persistence_guard
    async def create_booking(self, identity: Identity, req: BookingCreate) -> Booking:
        require_fields(req, ["shop_id", "scheduled_at", "issue"])
        shop = await self.db.get(Shop, req.shop_id)
        if not shop:
            raise NotFound("Shop not found")

        booking = Booking(
            user_id=identity.user_id,
            shop_id=shop.id,
            scheduled_at=req.scheduled_at,
            issue=req.issue.strip(),
            vehicle=req.vehicle.model_dump(exclude_none=True) if req.vehicle else {},
            status=JobStatus.PENDING,
        )
        self.db.add(booking)
        await self.db.commit()
        await self.db.refresh(booking)
        logger.info("Booking %s created for shop %s by user %s", booking.id, shop.id, identity.user_id)

        if self.broadcaster:
            await self.broadcaster.new_booking(booking, shop.owner_id)
        return booking

    # --- Orders ---

    @persistence_guard
    async def accept_order(self, identity: Identity, order_id: int) -> Order:
        order = await self._load_order(order_id)
        await self._require_repairman(identity)
        if order.user_id == identity.user_id:
            raise Forbidden("You cannot accept your own order")
        order = await self._transition(Order, order_id, "accept", repairman_id=identity.user_id)
        await self._order_event("accept", order)
        return order

    @persistence_guard
    async def reject_order(self, identity: Identity, order_id: int) -> Order:
        await self._load_order(order_id)
        await self._require_repairman(identity)
        order = await self._transition(Order, order_id, "reject")
        await self._order_event("reject", order)
        return order

    @persistence_guard
    async def start_order(self, identity: Identity, order_id: int) -> Order:
        order = await self._load_order(order_id)
        if order.repairman_id != identity.user_id:
            raise Forbidden("Only the assigned repairman can start this order")
        order = await self._transition(Order, order_id, "start")
        await self._order_event("start", order)
        return order

    @persistence_guard
    async def finish_order(self, identity: Identity, order_id: int) -> Order:
        order = await self._load_order(order_id)
        self._require_order_party(identity, order)
        order = await self._transition(Order, order_id, "finish")
        await self._order_event("finish", order)
        return order

    @persistence_guard
    async def cancel_order(self, identity: Identity, order_id: int) -> Order:
        order = await self._load_order(order_id)
        self._require_order_party(identity, order)
        order = await self._transition(Order, order_id, "cancel")
        await self._order_event("cancel", order)
        return order

    @persistence_guard
    async def get_order(self, identity: Identity, order_id: int) -> Order:
        order = await self._load_order(order_id)
        if identity.user_id in (order.user_id, order.repairman_id):
            return order
        # Open requests are visible to every repairman
        if order.status == JobStatus.PENDING and identity.is_repairman:
            return order
        raise Forbidden("You are not a party to this order")

    @persistence_guard
    async def list_user_orders(self, user_id: int) -> List[Order]:
        result = await self.db.execute(
            select(Order).filter(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
        )
        return result.scalars().all()

    @persistence_guard
    async def list_repairman_orders(self, identity: Identity) -> List[Order]:
        """Open requests from other users plus everything assigned to this repairman."""
        await self._require_repairman(identity)
        result = await self.db.execute(
            select(Order)
            .filter(
                or_(
                    Order.repairman_id == identity.user_id,
                    (Order.status == JobStatus.PENDING) & (Order.user_id != identity.user_id),
                )
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return result.scalars().all()

    # --- Bookings ---

    @persistence_guard
    async def accept_booking(self, identity: Identity, booking_id: int) -> Booking:
        _, owner_id = await self._load_booking(booking_id)
        if owner_id != identity.user_id:
            raise Forbidden("Only the shop owner can accept this booking")
        booking = await self._transition(Booking, booking_id, "accept")
        await self._booking_event("accept", booking, owner_id)
        return booking

    @persistence_guard
    async def reject_booking(self, identity: Identity, booking_id: int) -> Booking:
        _, owner_id = await self._load_booking(booking_id)
        if owner_id != identity.user_id:
            raise Forbidden("Only the shop owner can reject this booking")
        booking = await self._transition(Booking, booking_id, "reject")
        await self._booking_event("reject", booking, owner_id)
        return booking

    @persistence_guard
    async def complete_booking(self, identity: Identity, booking_id: int) -> Booking:
        booking, owner_id = await self._load_booking(booking_id)
        self._require_booking_party(identity, booking, owner_id)
        booking = await self._transition(Booking, booking_id, "finish")
        await self._booking_event("finish", booking, owner_id)
        return booking

    @persistence_guard
    async def cancel_booking(self, identity: Identity, booking_id: int) -> Booking:
        booking, owner_id = await self._load_booking(booking_id)
        self._require_booking_party(identity, booking, owner_id)
        booking = await self._transition(Booking, booking_id, "cancel")
        await self._booking_event("cancel", booking, owner_id)
        return booking

    @persistence_guard
    async def get_booking(self, identity: Identity, booking_id: int) -> Booking:
        booking, owner_id = await self._load_booking(booking_id)
        self._require_booking_party(identity, booking, owner_id)
        return booking

    @persistence_guard
    async def list_user_bookings(self, user_id: int) -> List[Booking]:
        result = await self.db.execute(
            select(Booking).filter(Booking.user_id == user_id).order_by(Booking.scheduled_at, Booking.id)
        )
        return result.scalars().all()

    @persistence_guard
    async def list_shop_bookings(self, owner_id: int) -> List[Booking]:
        result = await self.db.execute(select(Shop.id).filter(Shop.owner_id == owner_id))
        shop_id = result.scalars().first()
        if shop_id is None:
            raise NotFound("Shop not found")
        result = await self.db.execute(
            select(Booking).filter(Booking.shop_id == shop_id).order_by(Booking.scheduled_at, Booking.id)
        )
        return result.scalars().all()

    # --- Helpers ---

    async def _transition(self, model: Type[Job], record_id: int, name: str, **extra) -> Job:
        transition = TRANSITIONS[name]
        values = {"status": transition.target}
        if transition.stamp:
            values[transition.stamp] = datetime.now(timezone.utc)
        values.update(extra)

        result = await self.db.execute(
            update(model)
            .where(model.id == record_id, model.status.in_(transition.sources))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        changed = result.rowcount
        await self.db.commit()

        record = await self.db.get(model, record_id, populate_existing=True)
        kind = model.__tablename__[:-1]
        if record is None:
            raise NotFound(f"{kind.capitalize()} not found")
        if changed == 0:
            if name == "accept":
                logger.info("Lost accept race on %s %s (status %s)", kind, record_id, record.status.value)
                raise AlreadyTaken(f"This {kind} has already been taken", status=record.status.value)
            raise InvalidTransition(f"Cannot {name} a {record.status.value} {kind}", status=record.status.value)

        logger.info("%s %s -> %s", kind.capitalize(), record_id, record.status.value)
        return record

    async def _order_event(self, name: str, order: Order) -> None:
        if self.broadcaster:
            await self.broadcaster.order_event(TRANSITIONS[name].event, order)

    async def _booking_event(self, name: str, booking: Booking, owner_id: int) -> None:
        if self.broadcaster:
            await self.broadcaster.booking_event(TRANSITIONS[name].event, booking, owner_id)

    async def _load_order(self, order_id: int) -> Order:
        order = await self.db.get(Order, order_id)
        if not order:
            raise NotFound("Order not found")
        return order

    async def _load_booking(self, booking_id: int) -> Tuple[Booking, int]:
        result = await self.db.execute(
            select(Booking, Shop.owner_id).join(Shop, Shop.id == Booking.shop_id).filter(Booking.id == booking_id)
        )
        row = result.first()
        if not row:
            raise NotFound("Booking not found")
        return row[0], row[1]

    async def _require_repairman(self, identity: Identity) -> None:
        # The role is checked against the store, not the token, so a resigned repairman is refused
        user = await self.db.get(User, identity.user_id)
        if not user or not user.is_repairman:
            raise Forbidden("Only repairmen can do this")

    @staticmethod
    def _require_order_party(identity: Identity, order: Order) -> None:
        if identity.user_id not in (order.user_id, order.repairman_id):
            raise Forbidden("You are not a party to this order")

    @staticmethod
    def _require_booking_party(identity: Identity, booking: Booking, owner_id: int) -> None:
        if identity.user_id not in (booking.user_id, owner_id):
            raise Forbidden("You are not a party to this booking")
