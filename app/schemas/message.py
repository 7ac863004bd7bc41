from datetime import datetime
from typing import List, Optional, Union
from app.schemas.base import CamelModel

class MessageCreate(CamelModel):
    order_id: Optional[int] = None
    sender_id: Optional[Union[int, str]] = None
    sender_role: Optional[str] = None
    message: Optional[str] = None
    client_id: Optional[str] = None

class MessageResponse(CamelModel):
    id: int
    order_id: int
    sender_id: Union[int, str]
    sender_role: str
    message: str
    client_id: Optional[str] = None
    created_at: Optional[datetime] = None

class MessageList(CamelModel):
    messages: List[MessageResponse]
