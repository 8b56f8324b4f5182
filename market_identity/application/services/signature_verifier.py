import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlencode

from ...core.config import TelegramSettings
from ...exceptions import InvalidInitDataError

logger = logging.getLogger(__name__)

# Domain-separation constant defined by the Telegram Mini App protocol.
WEB_APP_DATA_KEY = b"WebAppData"


@dataclass(frozen=True)
class TelegramIdentity:
    telegram_id: int
    username: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    language_code: Optional[str]
    auth_date: int
    start_param: Optional[str] = None
    query_id: Optional[str] = None


def _parse_pairs(init_data: str) -> Dict[str, str]:
    pairs = parse_qsl(init_data, keep_blank_values=True, strict_parsing=True)
    fields: Dict[str, str] = {}
    for key, value in pairs:
        if key in fields:
            raise ValueError(f"duplicate key {key!r}")
        fields[key] = value
    return fields


def data_check_string(fields: Mapping[str, str]) -> str:
    return "\n".join(f"{key}={fields[key]}" for key in sorted(fields) if key != "hash")


def compute_hash(fields: Mapping[str, str], bot_token: str) -> str:
    secret_key = hmac.new(WEB_APP_DATA_KEY, bot_token.encode(), hashlib.sha256).digest()
    return hmac.new(secret_key, data_check_string(fields).encode(), hashlib.sha256).hexdigest()


def sign_init_data(fields: Mapping[str, str], bot_token: str) -> str:
    """Build a signed initData query string, as Telegram would for the given fields."""
    signed = dict(fields)
    signed["hash"] = compute_hash(fields, bot_token)
    return urlencode(signed)


class TelegramSignatureVerifier:
    """Validates Telegram Mini App ``initData`` against the bot token."""

    def __init__(self, settings: TelegramSettings, clock: Callable[[], float] = time.time):
        self._bot_token = settings.bot_token
        self._max_age = settings.max_age_seconds
        self._clock = clock

    def verify(self, init_data: str) -> bool:
        """Return True only if the payload's hash matches; never raises."""
        try:
            fields = _parse_pairs(init_data)
            provided = fields.get("hash")
            if not provided:
                return False
            expected = compute_hash(fields, self._bot_token)
            return hmac.compare_digest(expected.encode(), provided.encode())
        except (TypeError, ValueError, UnicodeError, AttributeError):
            return False

    def verify_and_parse(self, init_data: str) -> TelegramIdentity:
        if not self.verify(init_data):
            raise InvalidInitDataError()

        fields = _parse_pairs(init_data)
        try:
            auth_date = int(fields.get("auth_date") or 0)
        except ValueError:
            raise InvalidInitDataError(message="auth_date is malformed")
        if self._max_age and auth_date and self._clock() - auth_date > self._max_age:
            raise InvalidInitDataError(message="Telegram init data has expired")

        identity = self._parse_user(fields, auth_date)
        if identity is None:
            raise InvalidInitDataError("invalid_telegram_data", "Telegram user payload is missing or malformed")
        return identity

    def _parse_user(self, fields: Mapping[str, str], auth_date: int) -> Optional[TelegramIdentity]:
        raw = fields.get("user")
        if not raw:
            return None
        try:
            user = json.loads(raw)
            telegram_id = int(user["id"])
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning(f"Failed to parse Telegram user payload: {type(exc).__name__}")
            return None
        return TelegramIdentity(
            telegram_id=telegram_id,
            username=user.get("username") or None,
            first_name=user.get("first_name") or None,
            last_name=user.get("last_name") or None,
            language_code=user.get("language_code") or None,
            auth_date=auth_date,
            start_param=fields.get("start_param") or None,
            query_id=fields.get("query_id") or None,
        )
