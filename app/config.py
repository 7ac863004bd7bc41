from pydantic_settings import BaseSettings
from functools import lru_cache

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./repair_dispatch.db"
    DB_TIMEOUT_SECONDS: float = 10.0

    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_MINUTES: int = 60

    OTP_EXPIRES_MINUTES: int = 10
    OTP_LENGTH: int = 6

    # Leave empty to log OTP codes instead of texting them
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""

    # "shop" -> only the booked shop's owner, "global" -> every shop owner
    BOOKING_BROADCAST_SCOPE: str = "shop"
    OUTBOX_SIZE: int = 256

    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    class Config:
        env_file = ".env"

@lru_cache()
def get_settings():
    return Settings()
