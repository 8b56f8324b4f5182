import logging

from ...application.ports.code_transport import CodeTransport
from ...utils import redact_phone

logger = logging.getLogger(__name__)


class LoggingCodeTransport(CodeTransport):
    """Development transport: records deliveries instead of sending them."""

    def __init__(self) -> None:
        self.sent = []

    def send(self, phone: str, code: str) -> bool:
        self.sent.append((phone, code))
        logger.info(f"Code delivery to {redact_phone(phone)} recorded (SMS backend disabled)")
        return True
