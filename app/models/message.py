from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON
from sqlalchemy.sql import func
from app.database import Base

class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(JSON, nullable=False)  # user id, or phone number as a fallback; kept as sent
    sender_role = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    client_id = Column(String, nullable=True)  # sender's correlation id for its optimistic copy
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
