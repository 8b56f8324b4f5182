import re
import secrets
import time
from datetime import datetime, timezone
from typing import Optional

from .exceptions import InvalidPhoneError

# National trunk prefix "80" is rewritten to this country code.
DEFAULT_COUNTRY_CODE = "375"
MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15

_NON_DIGITS = re.compile(r"\D")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the SQL columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =========================
# Phone Handling
# =========================
def normalize_phone(raw: Optional[str]) -> str:
    """Canonicalize a human-entered phone number to ``+<digits>``.

    ``80xxxxxxxxx`` becomes ``+375xxxxxxxxx`` and an 11-digit ``8xxxxxxxxxx``
    becomes ``+7xxxxxxxxxx``. Raises ``InvalidPhoneError`` unless the result
    holds 10 to 15 digits. Normalizing a canonical number returns it unchanged.
    """
    if not isinstance(raw, str):
        raise InvalidPhoneError()

    digits = _NON_DIGITS.sub("", raw)
    if digits.startswith("80"):
        digits = DEFAULT_COUNTRY_CODE + digits[2:]
    elif digits.startswith("8") and len(digits) == 11:
        digits = "7" + digits[1:]

    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        raise InvalidPhoneError()
    return "+" + digits


def redact_phone(phone: Optional[str]) -> str:
    """Mask the middle of a phone number for logs: +375*****4567."""
    if not phone:
        return "-"
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) <= 7:
        return "+" + "*" * len(digits)
    return "+" + digits[:3] + "*" * (len(digits) - 7) + digits[-4:]


# =========================
# OTP Generation
# =========================
def generate_otp(length: int = 6) -> str:
    """Generate a numeric one-time code of the given length."""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def generate_app_user_id() -> str:
    """Synthetic application-level id for users created through the SMS channel."""
    return f"sms_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
