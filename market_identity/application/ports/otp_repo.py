from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol


class CodePurpose(str, Enum):
    LOGIN = "login"
    LINK_PHONE = "link_phone"

    @classmethod
    def parse(cls, value) -> "CodePurpose":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower().replace("-", "_"))


@dataclass
class OneTimeCodeDto:
    id: str
    phone: str
    purpose: CodePurpose
    code: str
    created_at: datetime
    expires_at: datetime
    verified: bool = False
    attempts: int = 0
    owner_id: Optional[str] = None
    platform: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class OneTimeCodeRepository(Protocol):
    def create_for_phone(self, phone: str, purpose: CodePurpose, code: str, expires_at: datetime,
                         owner_id: Optional[str] = None, platform: Optional[str] = None) -> OneTimeCodeDto:
        """Persist a new code, superseding older unverified codes for phone+purpose."""
        ...

    def find_latest_unconsumed(self, phone: str, purpose: CodePurpose) -> Optional[OneTimeCodeDto]:
        ...

    def register_failed_attempt(self, code_id: str) -> Optional[int]:
        """Atomically add one attempt to an unverified code.

        Returns the new attempt count, or None if the code is gone or already verified.
        """
        ...

    def consume(self, code_id: str, max_attempts: int) -> bool:
        """Atomically mark the code verified if it is unverified and under ``max_attempts``."""
        ...
