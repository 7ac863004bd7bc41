from pydantic import AliasChoices, Field
from datetime import datetime
from typing import List, Optional
from app.models.job import JobStatus
from app.schemas.base import CamelModel

class OrderCreate(CamelModel):
    address: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    vehicle_type: Optional[str] = None
    vehicle_brand: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_year: Optional[str] = None
    complaint: Optional[str] = None
    service_id: Optional[str] = None
    estimated_price: Optional[float] = None

class OrderResponse(CamelModel):
    id: int
    user_id: int
    repairman_id: Optional[int] = None
    address: str
    location_lat: float
    location_lng: float
    vehicle_type: str
    vehicle_brand: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_year: Optional[str] = None
    complaint: str
    service_id: Optional[str] = None
    estimated_price: Optional[float] = None
    status: JobStatus
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

class OrderSummary(CamelModel):
    """What providers see in a newOrderRequest notice."""

    order_id: int = Field(validation_alias="id")
    user_id: int
    address: str
    location_lat: float
    location_lng: float
    vehicle_type: str
    vehicle_brand: Optional[str] = None
    vehicle_model: Optional[str] = None
    complaint: str
    estimated_price: Optional[float] = None
    created_at: Optional[datetime] = None

class VehicleInfo(CamelModel):
    type: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[str] = None
    mileage: Optional[int] = None

class BookingCreate(CamelModel):
    shop_id: Optional[int] = None
    scheduled_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("datetime", "scheduledAt", "scheduled_at"), serialization_alias="datetime"
    )
    issue: Optional[str] = None
    vehicle: Optional[VehicleInfo] = None

class BookingResponse(CamelModel):
    id: int
    user_id: int
    shop_id: int
    scheduled_at: datetime = Field(
        validation_alias=AliasChoices("datetime", "scheduled_at"), serialization_alias="datetime"
    )
    issue: str
    vehicle: dict
    status: JobStatus
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

class BookingSummary(CamelModel):
    booking_id: int = Field(validation_alias="id")
    user_id: int
    shop_id: int
    scheduled_at: datetime = Field(validation_alias="scheduled_at", serialization_alias="datetime")
    issue: str
    vehicle: dict
    created_at: Optional[datetime] = None

class OrderEnvelope(CamelModel):
    success: bool = True
    message: str
    order: OrderResponse

class OrderList(CamelModel):
    orders: List[OrderResponse]

class BookingEnvelope(CamelModel):
    success: bool = True
    message: str
    booking: BookingResponse

class BookingList(CamelModel):
    bookings: List[BookingResponse]
