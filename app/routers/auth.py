from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_identity, get_sms
from app.schemas.user import (
    ChangePasswordRequest,
    CompleteRegistrationRequest,
    LoginRequest,
    PublicUserResponse,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
    UpdateProfileRequest,
    UserResponse,
    VerifyOtpRequest,
)
from app.services.sms_service import SmsService
from app.services.user_service import UserService
from app.utils.security import Identity

router = APIRouter(prefix="/api", tags=["Auth"])


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(req: RegisterRequest, db: AsyncSession = Depends(get_db), sms: SmsService = Depends(get_sms)):
    user = await UserService(db, sms).register(req)
    return RegisterResponse(
        message="User created, verification code sent", user_id=user.id, phone_number=user.phone_number
    )


@router.post("/complete-registration", response_model=RegisterResponse)
async def complete_registration(
    req: CompleteRegistrationRequest, db: AsyncSession = Depends(get_db), sms: SmsService = Depends(get_sms)
):
    user = await UserService(db, sms).complete_registration(req)
    return RegisterResponse(message="Verification code sent", user_id=user.id, phone_number=user.phone_number)


@router.post("/verify-otp", response_model=UserResponse)
async def verify_otp(req: VerifyOtpRequest, db: AsyncSession = Depends(get_db)):
    return await UserService(db).verify_otp(req)


@router.post("/login", response_model=TokenResponse)
async def login(req: LoginRequest, db: AsyncSession = Depends(get_db)):
    user, token = await UserService(db).login(req)
    return TokenResponse(message="Login successful", token=token, user=UserResponse.model_validate(user))


@router.get("/me", response_model=UserResponse)
async def me(identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    return await UserService(db).get_user(identity.user_id)


@router.get("/users/{user_id}", response_model=PublicUserResponse)
async def get_user(user_id: int, identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    return await UserService(db).get_user(user_id)


@router.post("/update-profile", response_model=UserResponse)
async def update_profile(
    req: UpdateProfileRequest, identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)
):
    return await UserService(db).update_profile(identity.user_id, req)


@router.post("/change-password")
async def change_password(
    req: ChangePasswordRequest, identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)
):
    await UserService(db).change_password(identity.user_id, req)
    return {"message": "Password changed"}
