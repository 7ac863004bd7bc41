import asyncio
import logging
from typing import Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from app.config import get_settings

logger = logging.getLogger(__name__)


class SmsService:
    """Sends OTP codes by SMS through Twilio. Without credentials the code is only logged."""

    def __init__(self, client: Optional[Client] = None):
        self.settings = get_settings()
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._client is not None or bool(
            self.settings.TWILIO_ACCOUNT_SID and self.settings.TWILIO_AUTH_TOKEN and self.settings.TWILIO_PHONE_NUMBER
        )

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = Client(self.settings.TWILIO_ACCOUNT_SID, self.settings.TWILIO_AUTH_TOKEN)
        return self._client

    async def send(self, to: str, body: str) -> bool:
        if not self.enabled:
            logger.info("SMS disabled, message for %s: %s", to, body)
            return False
        try:
            message = await asyncio.to_thread(
                self._get_client().messages.create,
                body=body,
                from_=self.settings.TWILIO_PHONE_NUMBER,
                to=to,
            )
        except TwilioRestException as e:
            # OTP can be re-requested through complete-registration
            logger.error("Failed to send SMS to %s: %s", to, e)
            return False
        logger.info("SMS sent to %s (sid=%s)", to, message.sid)
        return True

    async def send_otp(self, to: Optional[str], code: str) -> bool:
        if not to:
            logger.info("No phone number on file, OTP is %s", code)
            return False
        sent = await self.send(to, f"Your verification code is {code}")
        if not sent:
            logger.info("OTP for %s: %s", to, code)
        return sent
