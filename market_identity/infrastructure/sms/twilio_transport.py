import logging
from typing import Optional

import requests
from twilio.base.exceptions import TwilioException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from ...application.ports.code_transport import CodeTransport
from ...core.config import Settings
from ...utils import redact_phone

logger = logging.getLogger(__name__)

MESSAGE_TEMPLATE = "Your verification code: {code}"


class TwilioCodeTransport(CodeTransport):
    def __init__(self, client: Client, from_number: str, template: str = MESSAGE_TEMPLATE):
        self.client = client
        self.from_number = from_number
        self.template = template

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[Client] = None) -> "TwilioCodeTransport":
        if client is None:
            # No retries: delivery is fire-and-forget and failures are only logged.
            http_client = TwilioHttpClient(timeout=settings.TWILIO_TIMEOUT_SECONDS)
            client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN, http_client=http_client)
        return cls(client, settings.TWILIO_PHONE_NUMBER)

    def send(self, phone: str, code: str) -> bool:
        try:
            message = self.client.messages.create(
                to=phone,
                from_=self.from_number,
                body=self.template.format(code=code),
            )
        except (TwilioException, requests.RequestException) as e:
            logger.warning(f"Twilio delivery to {redact_phone(phone)} failed: {e}")
            return False
        logger.info(f"Code sent to {redact_phone(phone)} (sid={message.sid})")
        return True
