"""Who is connected, and which rooms/topics each connection listens on.

Rooms are plain names: ``order_<id>``, ``booking_<id>``, ``shop_<id>``,
``user_<id>`` and the provider broadcast group ``repairmen``. Publishing
never waits on a socket: each connection owns a bounded outbox that its
writer task drains.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from app.config import get_settings
from app.utils.security import Identity

logger = logging.getLogger(__name__)

PROVIDER_GROUP = "repairmen"


def order_room(order_id: int) -> str:
    return f"order_{order_id}"


def booking_room(booking_id: int) -> str:
    return f"booking_{booking_id}"


def shop_topic(shop_id: int) -> str:
    return f"shop_{shop_id}"


def user_topic(user_id: int) -> str:
    return f"user_{user_id}"


class Connection:
    def __init__(self, identity: Identity, outbox_size: Optional[int] = None, connection_id: Optional[str] = None):
        self.id = connection_id or uuid.uuid4().hex
        self.identity = identity
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size or get_settings().OUTBOX_SIZE)
        self.rooms: Set[str] = set()
        self.closed = False

    def deliver(self, event: str, data: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            self.outbox.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            logger.warning("Outbox full for connection %s, dropped %s", self.id, event)
            return False
        return True

    def pending(self) -> List[Dict[str, Any]]:
        """Take everything queued so far without waiting."""
        frames = []
        while not self.outbox.empty():
            frames.append(self.outbox.get_nowait())
        return frames

    def __repr__(self) -> str:
        return f"<Connection {self.id} user={self.identity.user_id}>"


class ConnectionRegistry:
    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def register(self, conn: Connection) -> None:
        async with self._lock:
            self._connections[conn.id] = conn
        logger.info("Connection %s admitted for user %s", conn.id, conn.identity.user_id)

    async def unregister(self, conn: Connection) -> None:
        async with self._lock:
            self._connections.pop(conn.id, None)
            for room in conn.rooms:
                members = self._rooms.get(room)
                if members is not None:
                    members.discard(conn.id)
                    if not members:
                        del self._rooms[room]
            conn.rooms.clear()
            conn.closed = True
        logger.info("Connection %s closed for user %s", conn.id, conn.identity.user_id)

    async def join(self, conn: Connection, room: str) -> bool:
        """Add the connection to a room. Returns False when it was already a member."""
        async with self._lock:
            if conn.id not in self._connections:
                return False
            members = self._rooms[room]
            if conn.id in members:
                return False
            members.add(conn.id)
            conn.rooms.add(room)
        logger.debug("Connection %s joined %s", conn.id, room)
        return True

    async def leave(self, conn: Connection, room: str) -> bool:
        async with self._lock:
            members = self._rooms.get(room)
            if not members or conn.id not in members:
                return False
            members.discard(conn.id)
            if not members:
                del self._rooms[room]
            conn.rooms.discard(room)
        logger.debug("Connection %s left %s", conn.id, room)
        return True

    def members(self, room: str) -> List[Connection]:
        return [self._connections[cid] for cid in list(self._rooms.get(room, ())) if cid in self._connections]

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    async def publish(
        self,
        event: str,
        data: Dict[str, Any],
        rooms: Iterable[str] = (),
        where: Optional[Callable[[Identity], bool]] = None,
        exclude: Optional[Connection] = None,
    ) -> int:
        """Deliver once to every connection in any of ``rooms`` or matching ``where``.

        No recipients is not an error. Returns how many connections got the event.
        """
        async with self._lock:
            targets: Dict[str, Connection] = {}
            for room in rooms:
                for cid in self._rooms.get(room, ()):
                    conn = self._connections.get(cid)
                    if conn is not None:
                        targets[cid] = conn
            if where is not None:
                for conn in self._connections.values():
                    if where(conn.identity):
                        targets[conn.id] = conn
            if exclude is not None:
                targets.pop(exclude.id, None)

        delivered = sum(1 for conn in targets.values() if conn.deliver(event, data))
        logger.info("Published %s to %d connection(s)", event, delivered)
        return delivered


registry = ConnectionRegistry()
