from pydantic import Field
from datetime import datetime
from typing import Optional
from app.schemas.base import CamelModel

class RegisterRequest(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    phone_number: Optional[str] = None

class RegisterResponse(CamelModel):
    message: str
    user_id: int
    phone_number: Optional[str] = None

class CompleteRegistrationRequest(CamelModel):
    user_id: Optional[int] = None
    phone_number: Optional[str] = None

class VerifyOtpRequest(CamelModel):
    user_id: Optional[int] = None
    otp: Optional[str] = None

class LoginRequest(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None

class UpdateProfileRequest(CamelModel):
    name: Optional[str] = None
    phone_number: Optional[str] = None

class ChangePasswordRequest(CamelModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None

class UserResponse(CamelModel):
    id: int
    email: str
    name: Optional[str] = None
    phone_number: Optional[str] = None
    verified: bool
    role: str
    # The mobile client reads these two flags in snake_case
    is_repairman: bool = Field(alias="is_repairman")
    has_shop: bool = Field(alias="has_shop")
    created_at: Optional[datetime] = None

class PublicUserResponse(CamelModel):
    id: int
    name: Optional[str] = None
    phone_number: Optional[str] = None
    role: str

class TokenResponse(CamelModel):
    message: str
    token: str
    user: UserResponse
