from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func
from sqlmodel import Session, select

from .....db.models import User
from .....application.ports.user_repo import (
    DuplicateIdentityError,
    FavoriteRef,
    ProviderKind,
    ProviderLink,
    UserDto,
    UserRepository,
    UserRole,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SqlUserRepository(UserRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, user: User) -> UserDto:
        return UserDto(
            id=user.id,
            telegram_id=user.telegram_id,
            app_user_id=user.app_user_id,
            phone=user.phone,
            phone_verified=bool(user.phone_verified),
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            role=UserRole(user.role),
            auth_providers=tuple(
                ProviderLink(kind=ProviderKind(p["kind"]), provider_id=p["provider_id"], linked_at=_from_iso(p.get("linked_at")))
                for p in (user.auth_providers or [])
            ),
            favorites=tuple(
                FavoriteRef(ad_id=f["ad_id"], added_at=_from_iso(f.get("added_at")))
                for f in (user.favorites or [])
            ),
            favorites_count=user.favorites_count,
            is_active=bool(user.is_active),
            merged_from=tuple(user.merged_from or []),
            merged_into=user.merged_into,
            last_active_at=user.last_active_at,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )

    def _apply(self, row: User, dto: UserDto) -> None:
        row.telegram_id = dto.telegram_id
        row.app_user_id = dto.app_user_id
        row.phone = dto.phone
        row.phone_verified = dto.phone_verified
        row.username = dto.username
        row.first_name = dto.first_name
        row.last_name = dto.last_name
        row.role = dto.role.value
        row.auth_providers = [
            {"kind": p.kind.value, "provider_id": p.provider_id, "linked_at": _iso(p.linked_at)}
            for p in dto.auth_providers
        ]
        row.favorites = [{"ad_id": f.ad_id, "added_at": _iso(f.added_at)} for f in dto.favorites]
        row.favorites_count = dto.favorites_count
        row.is_active = dto.is_active
        row.merged_from = list(dto.merged_from)
        row.merged_into = dto.merged_into
        row.last_active_at = dto.last_active_at
        row.created_at = dto.created_at
        row.updated_at = dto.updated_at

    def find_by_provider_id(self, telegram_id: int, active_only: bool = True) -> Optional[UserDto]:
        stmt = select(User).where(User.telegram_id == telegram_id)
        if active_only:
            stmt = stmt.where(User.is_active == True, User.merged_into.is_(None))
        user = self.session.exec(stmt.order_by(User.created_at)).first()
        return self._to_dto(user) if user else None

    def find_by_phone(self, phone: str, active_only: bool = True) -> Optional[UserDto]:
        stmt = select(User).where(User.phone == phone, User.phone_verified == True)
        if active_only:
            stmt = stmt.where(User.is_active == True, User.merged_into.is_(None))
        user = self.session.exec(stmt.order_by(User.created_at)).first()
        return self._to_dto(user) if user else None

    def find_by_id(self, user_id: str) -> Optional[UserDto]:
        user = self.session.get(User, user_id)
        return self._to_dto(user) if user else None

    def save(self, user: UserDto) -> UserDto:
        self.save_many([user])
        return user

    def save_many(self, users: Sequence[UserDto]) -> None:
        try:
            for dto in users:
                row = self.session.get(User, dto.id)
                if row is None:
                    row = User(id=dto.id)
                self._apply(row, dto)
                self.session.add(row)
                self.session.flush()
            self._check_unique(users)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def _check_unique(self, users: Sequence[UserDto]) -> None:
        """One active holder per verified phone and per telegram id, checked before commit."""
        active = (User.is_active == True, User.merged_into.is_(None))
        for dto in users:
            if not dto.is_canonical:
                continue
            if dto.phone and dto.phone_verified:
                count = self.session.exec(
                    select(func.count(User.id)).where(User.phone == dto.phone, User.phone_verified == True, *active)
                ).one()
                if count > 1:
                    raise DuplicateIdentityError(f"phone already held by another active user ({dto.id})")
            if dto.telegram_id is not None:
                count = self.session.exec(
                    select(func.count(User.id)).where(User.telegram_id == dto.telegram_id, *active)
                ).one()
                if count > 1:
                    raise DuplicateIdentityError(f"telegram id already held by another active user ({dto.id})")
