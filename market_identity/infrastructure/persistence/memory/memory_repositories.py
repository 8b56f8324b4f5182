import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from ....application.ports.otp_repo import CodePurpose, OneTimeCodeDto, OneTimeCodeRepository
from ....application.ports.ownership import OwnershipRewriter
from ....application.ports.user_repo import DuplicateIdentityError, UserDto, UserRepository
from ....utils import utcnow


class InMemoryUserRepository(UserRepository):
    def __init__(self) -> None:
        self._users: Dict[str, UserDto] = {}
        self._lock = threading.Lock()

    def find_by_provider_id(self, telegram_id: int, active_only: bool = True) -> Optional[UserDto]:
        return self._first(lambda u: u.telegram_id == telegram_id and (u.is_canonical or not active_only))

    def find_by_phone(self, phone: str, active_only: bool = True) -> Optional[UserDto]:
        return self._first(lambda u: u.phone == phone and u.phone_verified and (u.is_canonical or not active_only))

    def find_by_id(self, user_id: str) -> Optional[UserDto]:
        return self._users.get(user_id)

    def all(self) -> List[UserDto]:
        return list(self._users.values())

    def save(self, user: UserDto) -> UserDto:
        self.save_many([user])
        return user

    def save_many(self, users: Sequence[UserDto]) -> None:
        with self._lock:
            snapshot = dict(self._users)
            for user in users:
                self._users[user.id] = user
            try:
                self._check_unique(users)
            except DuplicateIdentityError:
                self._users = snapshot
                raise

    def _first(self, predicate) -> Optional[UserDto]:
        matches = sorted((u for u in self._users.values() if predicate(u)), key=lambda u: u.created_at)
        return matches[0] if matches else None

    def _check_unique(self, users: Sequence[UserDto]) -> None:
        active = [u for u in self._users.values() if u.is_canonical]
        for user in users:
            if not user.is_canonical:
                continue
            if user.phone and user.phone_verified:
                holders = [u for u in active if u.phone == user.phone and u.phone_verified]
                if len(holders) > 1:
                    raise DuplicateIdentityError(f"phone already held by another active user ({user.id})")
            if user.telegram_id is not None:
                holders = [u for u in active if u.telegram_id == user.telegram_id]
                if len(holders) > 1:
                    raise DuplicateIdentityError(f"telegram id already held by another active user ({user.id})")


class InMemoryOneTimeCodeRepository(OneTimeCodeRepository):
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._codes: List[OneTimeCodeDto] = []
        self._clock = clock
        self._lock = threading.Lock()

    def create_for_phone(self, phone: str, purpose: CodePurpose, code: str, expires_at: datetime,
                         owner_id: Optional[str] = None, platform: Optional[str] = None) -> OneTimeCodeDto:
        with self._lock:
            self._codes = [
                c for c in self._codes
                if not (c.phone == phone and c.purpose == purpose and not c.verified)
            ]
            rec = OneTimeCodeDto(
                id=str(uuid.uuid4()),
                phone=phone,
                purpose=purpose,
                code=code,
                created_at=self._clock(),
                expires_at=expires_at,
                owner_id=owner_id,
                platform=platform,
            )
            self._codes.append(rec)
            return replace(rec)

    def find_latest_unconsumed(self, phone: str, purpose: CodePurpose) -> Optional[OneTimeCodeDto]:
        matches = [c for c in self._codes if c.phone == phone and c.purpose == purpose and not c.verified]
        if not matches:
            return None
        return replace(max(matches, key=lambda c: c.created_at))

    def all(self) -> List[OneTimeCodeDto]:
        return [replace(c) for c in self._codes]

    def register_failed_attempt(self, code_id: str) -> Optional[int]:
        with self._lock:
            rec = self._get(code_id)
            if rec is None or rec.verified:
                return None
            rec.attempts += 1
            return rec.attempts

    def consume(self, code_id: str, max_attempts: int) -> bool:
        with self._lock:
            rec = self._get(code_id)
            if rec is None or rec.verified or rec.attempts >= max_attempts:
                return False
            rec.verified = True
            return True

    def _get(self, code_id: str) -> Optional[OneTimeCodeDto]:
        return next((c for c in self._codes if c.id == code_id), None)


class InMemoryOwnershipRewriter(OwnershipRewriter):
    """Listings keyed by id, each holding ``user_id`` and ``seller_id`` owner keys.

    Each thread keeps its own undo log of pending rewrites until commit or rollback.
    """

    def __init__(self, listings: Optional[Dict[str, Dict[str, Optional[str]]]] = None) -> None:
        self.listings: Dict[str, Dict[str, Optional[str]]] = listings or {}
        self.calls: List[tuple] = []
        self._lock = threading.Lock()
        self._pending = threading.local()

    def reassign_owner(self, from_key: str, to_key: str) -> int:
        undo = self._undo_log()
        updated = 0
        with self._lock:
            self.calls.append((from_key, to_key))
            for listing_id, listing in self.listings.items():
                touched = False
                for column in ("user_id", "seller_id"):
                    if listing.get(column) == from_key:
                        undo.append((listing_id, column, from_key))
                        listing[column] = to_key
                        touched = True
                updated += touched
        return updated

    def commit(self) -> None:
        self._undo_log().clear()

    def rollback(self) -> None:
        undo = self._undo_log()
        with self._lock:
            for listing_id, column, value in reversed(undo):
                self.listings[listing_id][column] = value
        undo.clear()

    def _undo_log(self) -> List[tuple]:
        if not hasattr(self._pending, "undo"):
            self._pending.undo = []
        return self._pending.undo
