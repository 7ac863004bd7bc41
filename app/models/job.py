from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Float, Text, JSON, Enum
from sqlalchemy.sql import func
from app.database import Base
import enum

class JobStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    ON_THE_WAY = "on_the_way"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELED = "canceled"

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.REJECTED, JobStatus.CANCELED)

def _status_column():
    return Column(
        Enum(JobStatus, name="job_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
    )

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    repairman_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    address = Column(String, nullable=False)
    location_lat = Column(Float, nullable=False)
    location_lng = Column(Float, nullable=False)
    vehicle_type = Column(String, nullable=False)
    vehicle_brand = Column(String, nullable=True)
    vehicle_model = Column(String, nullable=True)
    vehicle_year = Column(String, nullable=True)
    complaint = Column(Text, nullable=False)
    service_id = Column(String, nullable=True)
    estimated_price = Column(Float, nullable=True)

    status = _status_column()
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)

    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    issue = Column(Text, nullable=False)
    vehicle = Column(JSON, nullable=False, default=dict)

    status = _status_column()
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
