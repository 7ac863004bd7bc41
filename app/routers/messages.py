from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_broadcaster, get_current_identity
from app.schemas.message import MessageCreate, MessageList, MessageResponse
from app.services.broadcaster import Broadcaster
from app.services.chat_service import ChatService
from app.utils.security import Identity

router = APIRouter(prefix="/api/messages", tags=["Messages"])


@router.get("/{order_id}", response_model=MessageList)
async def list_messages(order_id: int, identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    messages = await ChatService(db).list_messages(order_id)
    return MessageList(messages=[MessageResponse.model_validate(m) for m in messages])


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    req: MessageCreate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    return await ChatService(db, broadcaster).send_message(identity, req)
