from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol, Sequence, Tuple

from ...utils import utcnow


class UserRole(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    MODERATOR = "moderator"
    ADMIN = "admin"


class ProviderKind(str, Enum):
    TELEGRAM = "telegram"
    SMS = "sms"


@dataclass(frozen=True)
class ProviderLink:
    kind: ProviderKind
    provider_id: str
    linked_at: Optional[datetime] = None


@dataclass(frozen=True)
class FavoriteRef:
    ad_id: str
    added_at: Optional[datetime] = None


@dataclass(frozen=True)
class UserDto:
    """Immutable snapshot of a user record.

    Changes are made with ``dataclasses.replace`` and only become durable
    through ``UserRepository.save``/``save_many``.
    """

    id: str
    telegram_id: Optional[int] = None
    app_user_id: Optional[str] = None
    phone: Optional[str] = None
    phone_verified: bool = False
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: UserRole = UserRole.BUYER
    auth_providers: Tuple[ProviderLink, ...] = ()
    favorites: Tuple[FavoriteRef, ...] = ()
    favorites_count: int = 0
    is_active: bool = True
    merged_from: Tuple[str, ...] = ()
    merged_into: Optional[str] = None
    last_active_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_canonical(self) -> bool:
        return self.is_active and self.merged_into is None

    def has_provider(self, kind: ProviderKind) -> bool:
        return any(link.kind == kind for link in self.auth_providers)


class DuplicateIdentityError(Exception):
    """A write would leave two active users holding the same verified phone or telegram id."""


class UserRepository(Protocol):
    def find_by_provider_id(self, telegram_id: int, active_only: bool = True) -> Optional[UserDto]:
        ...

    def find_by_phone(self, phone: str, active_only: bool = True) -> Optional[UserDto]:
        """Return the holder of ``phone`` as a verified phone."""
        ...

    def find_by_id(self, user_id: str) -> Optional[UserDto]:
        ...

    def save(self, user: UserDto) -> UserDto:
        ...

    def save_many(self, users: Sequence[UserDto]) -> None:
        """Write all users in order, atomically."""
        ...
