import hmac
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from ...exceptions import (
    CodeExpiredError,
    InvalidCodeError,
    MaxAttemptsExceededError,
    TooManyRequestsError,
)
from ...utils import generate_otp, normalize_phone, redact_phone, utcnow
from ..ports.code_transport import CodeTransport
from ..ports.otp_repo import CodePurpose, OneTimeCodeDto, OneTimeCodeRepository

logger = logging.getLogger(__name__)


@dataclass
class IssuedCode:
    phone: str
    expires_at: datetime
    delivered: bool


@dataclass
class OneTimeCodeService:
    """Issues, rate-limits and checks short-lived numeric codes bound to phone+purpose."""

    code_repo: OneTimeCodeRepository
    transport: CodeTransport
    code_length: int = 6
    ttl_seconds: int = 300
    cooldown_seconds: int = 60
    max_attempts: int = 5
    clock: Callable[[], datetime] = utcnow

    def request(self, phone: str, purpose, owner_id: Optional[str] = None,
                platform: Optional[str] = None) -> IssuedCode:
        normalized = normalize_phone(phone)
        purpose = CodePurpose.parse(purpose)
        now = self.clock()

        recent = self.code_repo.find_latest_unconsumed(normalized, purpose)
        if recent and not recent.is_expired(now):
            age = (now - recent.created_at).total_seconds()
            if age < self.cooldown_seconds:
                raise TooManyRequestsError(retry_after=max(1, math.ceil(self.cooldown_seconds - age)))

        code = generate_otp(self.code_length)
        record = self.code_repo.create_for_phone(
            normalized,
            purpose,
            code,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
            owner_id=owner_id,
            platform=platform,
        )
        delivered = self._deliver(normalized, code, purpose)
        return IssuedCode(phone=normalized, expires_at=record.expires_at, delivered=delivered)

    def verify(self, phone: str, code: str, purpose, owner_id: Optional[str] = None) -> OneTimeCodeDto:
        """Consume the newest code for phone+purpose; a code verifies at most once."""
        normalized = normalize_phone(phone)
        purpose = CodePurpose.parse(purpose)
        now = self.clock()

        record = self.code_repo.find_latest_unconsumed(normalized, purpose)
        if record is None or record.is_expired(now):
            raise CodeExpiredError()
        if record.attempts >= self.max_attempts:
            raise MaxAttemptsExceededError()

        # Attempt counting and consumption are atomic, conditional store updates.
        if not self._matches(record, code, owner_id):
            attempts = self.code_repo.register_failed_attempt(record.id)
            if attempts is None:
                raise CodeExpiredError()
            logger.info(f"Wrong code for {redact_phone(normalized)} ({purpose.value}), attempt {attempts}/{self.max_attempts}")
            if attempts > self.max_attempts:
                raise MaxAttemptsExceededError()
            raise InvalidCodeError(attempts_left=self.max_attempts - attempts)

        if not self.code_repo.consume(record.id, self.max_attempts):
            current = self.code_repo.find_latest_unconsumed(normalized, purpose)
            if current is not None and current.id == record.id and current.attempts >= self.max_attempts:
                raise MaxAttemptsExceededError()
            raise CodeExpiredError()

        record.verified = True
        return record

    def _matches(self, record: OneTimeCodeDto, code: str, owner_id: Optional[str]) -> bool:
        if record.owner_id and owner_id and record.owner_id != owner_id:
            return False
        supplied = str(code or "").strip()
        return hmac.compare_digest(record.code.encode(), supplied.encode())

    def _deliver(self, phone: str, code: str, purpose: CodePurpose) -> bool:
        try:
            delivered = bool(self.transport.send(phone, code))
        except Exception:
            logger.exception(f"Code transport raised for {redact_phone(phone)} ({purpose.value})")
            return False
        if not delivered:
            logger.warning(f"Code delivery failed for {redact_phone(phone)} ({purpose.value})")
        return delivered
