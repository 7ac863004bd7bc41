"""WebSocket endpoint for dispatch notices, room events and chat."""

import asyncio
import contextlib
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from app.dependencies import get_registry, get_session_factory
from app.errors import AuthenticationError
from app.services.connection_registry import Connection, ConnectionRegistry
from app.services.realtime_gateway import RealtimeGateway
from app.utils.security import decode_token, extract_bearer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


async def _drain_outbox(websocket: WebSocket, conn: Connection):
    while True:
        frame = await conn.outbox.get()
        try:
            await websocket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError):
            logger.info("Socket for connection %s went away while sending", conn.id)
            return


@router.websocket("/ws")
async def realtime(
    websocket: WebSocket,
    conn_registry: ConnectionRegistry = Depends(get_registry),
    session_factory=Depends(get_session_factory),
):
    # Admission is all-or-nothing: a bad token never gets an accepted socket
    try:
        token = websocket.query_params.get("token") or extract_bearer(websocket.headers.get("authorization"))
        identity = decode_token(token)
    except AuthenticationError as e:
        logger.warning("Refused real-time connection: %s", e.detail)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    gateway = RealtimeGateway(conn_registry, session_factory)
    conn = Connection(identity)
    writer = asyncio.create_task(_drain_outbox(websocket, conn))
    try:
        await gateway.connect(conn)
        while True:
            raw = await websocket.receive_text()
            await gateway.handle(conn, raw)
    except WebSocketDisconnect:
        logger.info("Connection %s disconnected", conn.id)
    finally:
        await gateway.disconnect(conn)
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer
