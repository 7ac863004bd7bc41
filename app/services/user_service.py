import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.config import get_settings
from app.database import persistence_guard
from app.errors import AuthenticationError, Conflict, NotFound, ValidationError
from app.models.user import Otp, User
from app.schemas.user import (
    ChangePasswordRequest,
    CompleteRegistrationRequest,
    LoginRequest,
    RegisterRequest,
    UpdateProfileRequest,
    VerifyOtpRequest,
)
from app.services.sms_service import SmsService
from app.utils.security import create_token, hash_password, verify_password
from app.utils.validators import normalize_phone, require_fields, validate_email, validate_password

logger = logging.getLogger(__name__)


def _as_aware(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class UserService:
    def __init__(self, db: AsyncSession, sms: Optional[SmsService] = None):
        self.db = db
        self.sms = sms or SmsService()
        self.settings = get_settings()

    @persistence_guard
    async def get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    @persistence_guard
    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).filter(User.email == email))
        return result.scalars().first()

    @persistence_guard
    async def register(self, req: RegisterRequest) -> User:
        require_fields(req, ["name", "email", "password"])
        email = validate_email(req.email)
        validate_password(req.password)
        phone = normalize_phone(req.phone_number) if req.phone_number else None

        if await self.get_user_by_email(email):
            raise Conflict("User already exists")

        user = User(
            email=email,
            password_hash=hash_password(req.password),
            name=req.name.strip(),
            phone_number=phone,
            verified=False,
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info("Registered user %s (%s)", user.id, email)

        await self.issue_otp(user)
        return user

    @persistence_guard
    async def complete_registration(self, req: CompleteRegistrationRequest) -> User:
        require_fields(req, ["user_id", "phone_number"])
        user = await self.get_user(req.user_id)
        if user.verified:
            raise Conflict("User is already verified")
        user.phone_number = normalize_phone(req.phone_number)
        await self.db.commit()
        await self.db.refresh(user)
        await self.issue_otp(user)
        return user

    async def issue_otp(self, user: User) -> str:
        """Create a fresh OTP for the user, superseding any previous one, and send it."""
        code = "".join(secrets.choice("0123456789") for _ in range(self.settings.OTP_LENGTH))
        await self.db.execute(delete(Otp).where(Otp.user_id == user.id))
        self.db.add(
            Otp(
                user_id=user.id,
                code=code,
                expires_at=datetime.now(timezone.utc) + timedelta(minutes=self.settings.OTP_EXPIRES_MINUTES),
            )
        )
        await self.db.commit()
        await self.sms.send_otp(user.phone_number, code)
        return code

    @persistence_guard
    async def verify_otp(self, req: VerifyOtpRequest) -> User:
        require_fields(req, ["user_id", "otp"])
        user = await self.get_user(req.user_id)

        result = await self.db.execute(select(Otp).filter(Otp.user_id == user.id))
        otp = result.scalars().first()
        if not otp or otp.code != req.otp.strip():
            raise ValidationError("Invalid OTP")
        if _as_aware(otp.expires_at) < datetime.now(timezone.utc):
            raise ValidationError("OTP expired, request a new one")

        user.verified = True
        await self.db.delete(otp)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info("User %s verified", user.id)
        return user

    @persistence_guard
    async def login(self, req: LoginRequest) -> tuple:
        require_fields(req, ["email", "password"])
        user = await self.get_user_by_email(req.email.strip().lower())
        if not user or not verify_password(req.password, user.password_hash):
            raise AuthenticationError("Invalid credentials")
        if not user.verified:
            raise AuthenticationError("Account not verified")
        return user, create_token(user)

    @persistence_guard
    async def update_profile(self, user_id: int, req: UpdateProfileRequest) -> User:
        user = await self.get_user(user_id)
        if req.name is not None:
            if not req.name.strip():
                raise ValidationError(missing=["name"])
            user.name = req.name.strip()
        if req.phone_number is not None:
            user.phone_number = normalize_phone(req.phone_number)
        await self.db.commit()
        await self.db.refresh(user)
        return user

    @persistence_guard
    async def change_password(self, user_id: int, req: ChangePasswordRequest) -> None:
        require_fields(req, ["current_password", "new_password"])
        user = await self.get_user(user_id)
        if not verify_password(req.current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")
        user.password_hash = hash_password(validate_password(req.new_password))
        await self.db.commit()
