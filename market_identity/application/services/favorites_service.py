from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from ...exceptions import UserNotFoundError
from ...utils import utcnow
from ..ports.user_repo import UserDto, UserRepository
from .user_records import toggle_favorite


@dataclass
class FavoritesService:
    user_repo: UserRepository
    clock: Callable[[], datetime] = utcnow

    def toggle(self, user_id: str, ad_id: str) -> UserDto:
        user = self.user_repo.find_by_id(user_id)
        if user is None or not user.is_canonical:
            raise UserNotFoundError()
        updated, _ = toggle_favorite(user, str(ad_id), self.clock())
        return self.user_repo.save(updated)
