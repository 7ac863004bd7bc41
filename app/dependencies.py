from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.database import AsyncSessionLocal
from app.errors import AuthenticationError
from app.services.broadcaster import Broadcaster
from app.services.connection_registry import ConnectionRegistry, registry
from app.services.sms_service import SmsService
from app.utils.security import Identity, decode_token

bearer = HTTPBearer(auto_error=False)


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Identity:
    if credentials is None:
        raise AuthenticationError("No token provided")
    return decode_token(credentials.credentials)


def get_registry() -> ConnectionRegistry:
    return registry


def get_broadcaster(conn_registry: ConnectionRegistry = Depends(get_registry)) -> Broadcaster:
    return Broadcaster(conn_registry)


def get_sms() -> SmsService:
    return SmsService()


def get_session_factory():
    return AsyncSessionLocal
