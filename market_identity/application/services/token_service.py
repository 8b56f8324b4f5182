import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import jwt

from ...core.config import TokenSettings
from ...utils import utcnow
from ..ports.user_repo import UserDto

logger = logging.getLogger(__name__)


class SessionTokenService:
    """Issues and verifies signed, time-bounded session tokens (JWT)."""

    def __init__(self, settings: TokenSettings, clock: Callable[[], datetime] = utcnow):
        self._secret = settings.secret
        self._algorithm = settings.algorithm
        self._ttl = settings.ttl
        self._clock = clock

    def issue(self, user: UserDto) -> str:
        now = self._clock()
        payload = {
            "sub": user.id,
            "userId": user.id,
            "providerId": user.telegram_id,
            "phone": user.phone,
            "role": user.role.value,
            "iat": now,
            "exp": now + self._ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> Optional[Dict[str, Any]]:
        """Decoded payload, or None for any expired, malformed or forged token."""
        if not isinstance(token, str) or not token:
            return None
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Session token has expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Session token rejected: {type(e).__name__}")
            return None
