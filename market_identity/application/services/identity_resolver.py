import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional, Sequence, Tuple

from ...utils import generate_app_user_id, normalize_phone, redact_phone, utcnow
from ..ports.user_repo import ProviderKind, UserDto, UserRepository
from .signature_verifier import TelegramIdentity, TelegramSignatureVerifier
from .user_records import with_provider_link

logger = logging.getLogger(__name__)

LinkPair = Tuple[ProviderKind, str]


class IdentityResolver(ABC):
    """Finds or creates the canonical user for one verified identity channel."""

    def __init__(self, user_repo: UserRepository, clock: Callable[[], datetime] = utcnow):
        self.user_repo = user_repo
        self.clock = clock

    @abstractmethod
    def resolve(self, *args, **kwargs) -> UserDto:
        ...

    def _materialize(self, existing: Optional[UserDto], links: Sequence[LinkPair], **fields) -> UserDto:
        """Create or refresh a user, make sure ``links`` are present and persist it."""
        now = self.clock()
        if existing is None:
            user = UserDto(id=str(uuid.uuid4()), created_at=now, **fields)
        else:
            user = replace(existing, **fields)
        for kind, provider_id in links:
            user = with_provider_link(user, kind, provider_id, now)
        user = replace(user, last_active_at=now, updated_at=now)
        return self.user_repo.save(user)


class TelegramIdentityResolver(IdentityResolver):
    def __init__(self, user_repo: UserRepository, verifier: TelegramSignatureVerifier,
                 clock: Callable[[], datetime] = utcnow):
        super().__init__(user_repo, clock)
        self.verifier = verifier

    def resolve(self, init_data: str, phone: Optional[str] = None) -> UserDto:
        # Signature failure short-circuits before any lookup or write.
        identity = self.verifier.verify_and_parse(init_data)
        verified_phone = normalize_phone(phone) if phone else None
        telegram_link = (ProviderKind.TELEGRAM, str(identity.telegram_id))

        user = self.user_repo.find_by_provider_id(identity.telegram_id)
        if user:
            return self._materialize(user, [telegram_link], **self._profile(identity, user))

        if verified_phone:
            holder = self.user_repo.find_by_phone(verified_phone)
            if holder and holder.telegram_id is None:
                logger.info(f"Linking telegram {identity.telegram_id} to phone holder {holder.id}")
                return self._materialize(
                    holder,
                    [telegram_link],
                    telegram_id=identity.telegram_id,
                    **self._profile(identity, holder),
                )
            if holder:
                # Phone belongs to an account bound to another telegram id; do not hand it over.
                logger.warning(
                    f"Phone {redact_phone(verified_phone)} is held by user {holder.id} with another telegram id"
                )
            else:
                return self._materialize(
                    None,
                    [telegram_link, (ProviderKind.SMS, verified_phone)],
                    telegram_id=identity.telegram_id,
                    phone=verified_phone,
                    phone_verified=True,
                    **self._profile(identity, None),
                )

        return self._materialize(
            None,
            [telegram_link],
            telegram_id=identity.telegram_id,
            phone_verified=False,
            **self._profile(identity, None),
        )

    @staticmethod
    def _profile(identity: TelegramIdentity, user: Optional[UserDto]) -> dict:
        # Empty values in the payload never wipe what is already stored.
        return {
            "username": identity.username or (user.username if user else None),
            "first_name": identity.first_name or (user.first_name if user else None),
            "last_name": identity.last_name or (user.last_name if user else None),
        }


class PhoneIdentityResolver(IdentityResolver):
    def resolve(self, verified_phone: str) -> UserDto:
        phone = normalize_phone(verified_phone)
        sms_link = (ProviderKind.SMS, phone)

        user = self.user_repo.find_by_phone(phone)
        if user:
            return self._materialize(user, [sms_link], phone_verified=True)

        return self._materialize(
            None,
            [sms_link],
            phone=phone,
            phone_verified=True,
            app_user_id=generate_app_user_id(),
        )
