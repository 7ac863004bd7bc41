import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.database import persistence_guard
from app.errors import Forbidden, NotFound
from app.models.job import Order
from app.models.message import Message
from app.models.user import User
from app.schemas.message import MessageCreate
from app.services.broadcaster import Broadcaster
from app.utils.security import Identity
from app.utils.validators import require_fields

logger = logging.getLogger(__name__)


class ChatService:
    """Persists chat messages and relays the stored row to the order's room.

    Sending does not require the sender to have joined the room, but the
    stated sender must be the authenticated user (by id or stored phone).
    """

    def __init__(self, db: AsyncSession, broadcaster: Optional[Broadcaster] = None):
        self.db = db
        self.broadcaster = broadcaster

    @persistence_guard
    async def send_message(self, identity: Identity, req: MessageCreate) -> Message:
        require_fields(req, ["order_id", "sender_id", "sender_role", "message"])
        await self._check_sender(identity, req.sender_id)
        if not await self.db.get(Order, req.order_id):
            raise NotFound("Order not found")

        message = Message(
            order_id=req.order_id,
            sender_id=req.sender_id,
            sender_role=req.sender_role,
            message=req.message,
            client_id=req.client_id,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(message)
        await self.db.commit()
        await self.db.refresh(message)
        logger.info("Message %s stored for order %s", message.id, message.order_id)

        if self.broadcaster:
            await self.broadcaster.message(message)
        return message

    async def _check_sender(self, identity: Identity, sender_id) -> None:
        if str(sender_id) == str(identity.user_id):
            return
        user = await self.db.get(User, identity.user_id)
        if user and user.phone_number and str(sender_id) == user.phone_number:
            return
        raise Forbidden("senderId does not match the authenticated user")

    @persistence_guard
    async def list_messages(self, order_id: int) -> List[Message]:
        if not await self.db.get(Order, order_id):
            raise NotFound("Order not found")
        result = await self.db.execute(
            select(Message).filter(Message.order_id == order_id).order_by(Message.created_at, Message.id)
        )
        return result.scalars().all()


def _parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class MessageInbox:
    """Receiver-side message list that tolerates optimistic local echoes.

    Duplicates are dropped by server id; an authoritative copy replaces the
    optimistic one carrying the same clientId; messages with neither are
    matched on sender and text within ``window``.
    """

    def __init__(self, window: timedelta = timedelta(seconds=5)):
        self.window = window
        self.messages: List[Dict[str, Any]] = []

    def add_local(self, payload: Dict[str, Any]) -> bool:
        """Show an unsent message straight away. It has no id yet."""
        entry = dict(payload)
        entry.setdefault("createdAt", datetime.now(timezone.utc).isoformat())
        entry["pending"] = True
        return self._insert(entry)

    def receive(self, payload: Dict[str, Any]) -> bool:
        """Take a server message. Returns False when it was a duplicate."""
        entry = dict(payload)
        entry["pending"] = False
        return self._insert(entry)

    def _insert(self, entry: Dict[str, Any]) -> bool:
        msg_id = entry.get("id")
        client_id = entry.get("clientId")

        for index, existing in enumerate(self.messages):
            if msg_id is not None and existing.get("id") == msg_id:
                return False
            if client_id and existing.get("clientId") == client_id:
                if existing["pending"] and not entry["pending"]:
                    self.messages[index] = entry
                return False
            if self._looks_same(existing, entry):
                if existing["pending"] and not entry["pending"]:
                    self.messages[index] = entry
                return False

        self.messages.append(entry)
        return True

    def _looks_same(self, a: Dict[str, Any], b: Dict[str, Any]) -> bool:
        # Only a pending echo and a server copy can be the same message
        if a["pending"] == b["pending"]:
            return False
        if str(a.get("senderId")) != str(b.get("senderId")) or a.get("message") != b.get("message"):
            return False
        ta, tb = _parse_time(a.get("createdAt")), _parse_time(b.get("createdAt"))
        if ta is None or tb is None:
            return False
        return abs(ta - tb) <= self.window
