import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Optional

from ...exceptions import AuthError, InternalError, UserNotFoundError
from ...utils import normalize_phone, redact_phone, utcnow
from ..ports.audit_logger import AuditLogger
from ..ports.otp_repo import CodePurpose
from ..ports.user_repo import UserDto, UserRepository
from .identity_resolver import PhoneIdentityResolver, TelegramIdentityResolver
from .merge_engine import AccountMergeEngine
from .otp_service import IssuedCode, OneTimeCodeService
from .token_service import SessionTokenService
from .user_records import attach_verified_phone

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    token: str
    user: UserDto
    merged: bool = False
    merged_from_id: Optional[str] = None


@dataclass
class AuthOrchestrator:
    """Public authentication flows: Telegram login, phone-code login and phone linking."""

    user_repo: UserRepository
    codes: OneTimeCodeService
    tokens: SessionTokenService
    telegram_resolver: TelegramIdentityResolver
    phone_resolver: PhoneIdentityResolver
    merge_engine: AccountMergeEngine
    audit_logger: Optional[AuditLogger] = None
    clock: Callable[[], datetime] = utcnow

    def login_via_chat_app(self, init_data: str, phone: Optional[str] = None) -> AuthResult:
        with self._guard("telegram_login", phone=phone, provider="telegram"):
            user = self.telegram_resolver.resolve(init_data, phone)
            result = AuthResult(token=self.tokens.issue(user), user=user)
        self._audit("telegram_login", phone=user.phone, user_id=user.id, provider="telegram")
        return result

    def request_phone_code(self, phone: str, purpose=CodePurpose.LOGIN, owner_id: Optional[str] = None,
                           platform: Optional[str] = None) -> IssuedCode:
        try:
            purpose = CodePurpose.parse(purpose)
        except ValueError:
            raise AuthError("invalid_purpose", "Unknown code purpose")
        with self._guard("request_code", phone=phone, purpose=purpose.value):
            issued = self.codes.request(phone, purpose, owner_id=owner_id, platform=platform)
        self._audit("request_code", phone=issued.phone, purpose=purpose.value,
                    details={"delivered": issued.delivered})
        return issued

    def verify_phone_code(self, phone: str, code: str) -> AuthResult:
        with self._guard("verify_code", phone=phone, provider="sms", purpose=CodePurpose.LOGIN.value):
            verified = self.codes.verify(phone, code, CodePurpose.LOGIN)
            user = self.phone_resolver.resolve(verified.phone)
            result = AuthResult(token=self.tokens.issue(user), user=user)
        self._audit("verify_code", phone=user.phone, user_id=user.id, provider="sms")
        return result

    def link_phone(self, current_user_id: str, phone: str, code: str) -> AuthResult:
        with self._guard("link_phone", phone=phone, provider="sms", purpose=CodePurpose.LINK_PHONE.value):
            normalized = normalize_phone(phone)
            current = self.user_repo.find_by_id(current_user_id)
            if current is None or not current.is_canonical:
                raise UserNotFoundError()

            self.codes.verify(normalized, code, CodePurpose.LINK_PHONE, owner_id=current.id)
            target = attach_verified_phone(current, normalized, self.clock())

            holder = self.user_repo.find_by_phone(normalized)
            if holder and holder.id != current.id:
                merged = self.merge_engine.merge(holder, target)
                if merged is not None:
                    result = AuthResult(token=self.tokens.issue(merged), user=merged,
                                        merged=True, merged_from_id=holder.id)
                    self._audit("link_phone", phone=normalized, user_id=merged.id, provider="sms",
                                details={"merged_from": holder.id})
                    return result

            saved = self.user_repo.save(target)
            result = AuthResult(token=self.tokens.issue(saved), user=saved)
        self._audit("link_phone", phone=normalized, user_id=saved.id, provider="sms")
        return result

    def get_current_user(self, token: str) -> Optional[UserDto]:
        """The active user a session token belongs to, or None."""
        payload = self.tokens.verify(token)
        if not payload:
            return None
        user = self.user_repo.find_by_id(str(payload.get("sub") or payload.get("userId")))
        if user is None or not user.is_canonical:
            return None
        return user

    @contextmanager
    def _guard(self, action: str, phone: Optional[str] = None, provider: Optional[str] = None,
               purpose: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except AuthError as e:
            self._audit(action, phone=phone, provider=provider, purpose=purpose, success=False,
                        details={"error": e.error})
            raise
        except Exception as exc:
            logger.exception(
                f"{action} failed: phone={redact_phone(phone)} provider={provider} purpose={purpose}"
            )
            self._audit(action, phone=phone, provider=provider, purpose=purpose, success=False,
                        details={"error": type(exc).__name__})
            raise InternalError() from exc

    def _audit(self, action: str, **kwargs) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log(action, **kwargs)
