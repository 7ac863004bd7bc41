from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_broadcaster, get_current_identity
from app.schemas.job import BookingCreate, BookingEnvelope, BookingList, BookingResponse
from app.services.broadcaster import Broadcaster
from app.services.job_service import JobService
from app.utils.security import Identity

router = APIRouter(tags=["Bookings"])


def _envelope(message: str, booking) -> BookingEnvelope:
    return BookingEnvelope(message=message, booking=BookingResponse.model_validate(booking))


@router.post("/book/create", response_model=BookingEnvelope, status_code=status.HTTP_201_CREATED)
async def create_booking(
    req: BookingCreate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    booking = await JobService(db, broadcaster).create_booking(identity, req)
    return _envelope("Booking created", booking)


@router.post("/booking/accept/{booking_id}", response_model=BookingEnvelope)
async def accept_booking(
    booking_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    booking = await JobService(db, broadcaster).accept_booking(identity, booking_id)
    return _envelope("Booking accepted", booking)


@router.post("/booking/reject/{booking_id}", response_model=BookingEnvelope)
async def reject_booking(
    booking_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    booking = await JobService(db, broadcaster).reject_booking(identity, booking_id)
    return _envelope("Booking rejected", booking)


@router.post("/booking/cancel/{booking_id}", response_model=BookingEnvelope)
async def cancel_booking(
    booking_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    booking = await JobService(db, broadcaster).cancel_booking(identity, booking_id)
    return _envelope("Booking canceled", booking)


@router.post("/booking/complete/{booking_id}", response_model=BookingEnvelope)
async def complete_booking(
    booking_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    booking = await JobService(db, broadcaster).complete_booking(identity, booking_id)
    return _envelope("Booking completed", booking)


@router.get("/api/booking/{booking_id}")
async def get_booking(booking_id: int, identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    booking = await JobService(db).get_booking(identity, booking_id)
    return {"booking": BookingResponse.model_validate(booking).wire()}


@router.get("/api/bookings", response_model=BookingList)
async def my_bookings(identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    bookings = await JobService(db).list_user_bookings(identity.user_id)
    return BookingList(bookings=[BookingResponse.model_validate(b) for b in bookings])


@router.get("/api/shop/bookings", response_model=BookingList)
async def shop_bookings(identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    bookings = await JobService(db).list_shop_bookings(identity.user_id)
    return BookingList(bookings=[BookingResponse.model_validate(b) for b in bookings])
