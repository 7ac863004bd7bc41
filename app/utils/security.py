import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt

from app.config import get_settings
from app.errors import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Who is on the other end of a request or socket, as stated by a verified token."""

    user_id: int
    email: str
    role: str = "customer"
    is_repairman: bool = False
    has_shop: bool = False

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Identity":
        try:
            user_id = int(claims["id"])
        except (KeyError, TypeError, ValueError):
            raise AuthenticationError("Invalid token payload")
        return cls(
            user_id=user_id,
            email=str(claims.get("email", "")),
            role=str(claims.get("role", "customer")),
            is_repairman=bool(claims.get("is_repairman", False)),
            has_shop=bool(claims.get("has_shop", False)),
        )

    @classmethod
    def from_user(cls, user) -> "Identity":
        return cls(
            user_id=user.id,
            email=user.email,
            role=user.role,
            is_repairman=bool(user.is_repairman),
            has_shop=bool(user.has_shop),
        )


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a bcrypt hash")
        return False


def create_token(user, expires_minutes: Optional[int] = None) -> str:
    settings = get_settings()
    minutes = expires_minutes if expires_minutes is not None else settings.JWT_EXPIRES_MINUTES
    payload = {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "is_repairman": bool(user.is_repairman),
        "has_shop": bool(user.has_shop),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: Optional[str]) -> Identity:
    if not token:
        raise AuthenticationError("No token provided")
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")
    return Identity.from_claims(claims)


def extract_bearer(header_value: Optional[str]) -> Optional[str]:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Token format invalid")
    return token.strip()
