# market_identity/schemas/users/user.py
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime

from ...application.ports.user_repo import ProviderKind, UserDto


class UserResponse(BaseModel):
    """Sanitized view of a user; no provider ids, secrets or merge bookkeeping."""

    id: str
    telegram_id: Optional[int] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    phone_verified: bool
    role: str
    auth_providers: List[str]
    telegram_linked: bool
    is_active: bool
    favorites_count: int
    created_at: datetime

    @classmethod
    def from_dto(cls, user: UserDto) -> "UserResponse":
        return cls(
            id=user.id,
            telegram_id=user.telegram_id,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            phone=user.phone,
            phone_verified=user.phone_verified,
            role=user.role.value,
            auth_providers=[link.kind.value for link in user.auth_providers],
            telegram_linked=user.telegram_id is not None or user.has_provider(ProviderKind.TELEGRAM),
            is_active=user.is_active,
            favorites_count=user.favorites_count,
            created_at=user.created_at,
        )


class FavoriteToggleResponse(BaseModel):
    ad_id: str
    is_favorite: bool
    favorites_count: int


class FavoritesResponse(BaseModel):
    ad_ids: List[str]
    favorites_count: int

    @classmethod
    def from_dto(cls, user: UserDto) -> "FavoritesResponse":
        return cls(ad_ids=[fav.ad_id for fav in user.favorites], favorites_count=user.favorites_count)
