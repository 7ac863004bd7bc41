from app.models.user import User, Otp
from app.models.provider import Repairman, Shop
from app.models.job import Order, Booking, JobStatus, TERMINAL_STATUSES
from app.models.message import Message

__all__ = ["User", "Otp", "Repairman", "Shop", "Order", "Booking", "JobStatus", "TERMINAL_STATUSES", "Message"]
