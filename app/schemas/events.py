"""Payloads of client -> server real-time events."""

from typing import Optional
from app.schemas.base import CamelModel

class OrderRef(CamelModel):
    order_id: Optional[int] = None

class BookingRef(CamelModel):
    booking_id: Optional[int] = None

class LocationUpdate(CamelModel):
    order_id: Optional[int] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
