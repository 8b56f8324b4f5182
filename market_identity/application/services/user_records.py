"""Pure transformations over ``UserDto`` snapshots.

Every function returns a new snapshot and never touches storage, so a
sequence of them can be validated completely before anything is saved.
"""
from dataclasses import replace
from datetime import datetime
from typing import Iterable, List, Tuple

from ..ports.user_repo import FavoriteRef, ProviderKind, ProviderLink, UserDto, UserRole

ADMIN_ROLES = (UserRole.ADMIN, UserRole.MODERATOR)

# Optional scalar fields copied from a merge source when the target lacks them.
MERGEABLE_FIELDS = ("telegram_id", "app_user_id", "username", "first_name", "last_name")


def with_provider_link(user: UserDto, kind: ProviderKind, provider_id: str, now: datetime) -> UserDto:
    if user.has_provider(kind):
        return user
    link = ProviderLink(kind=kind, provider_id=str(provider_id), linked_at=now)
    return replace(user, auth_providers=user.auth_providers + (link,))


def union_provider_links(target: Iterable[ProviderLink], source: Iterable[ProviderLink]) -> Tuple[ProviderLink, ...]:
    """Append source links whose kind the target does not have yet."""
    merged: List[ProviderLink] = list(target)
    kinds = {link.kind for link in merged}
    for link in source:
        if link.kind not in kinds:
            merged.append(link)
            kinds.add(link.kind)
    return tuple(merged)


def union_favorites(target: Iterable[FavoriteRef], source: Iterable[FavoriteRef]) -> Tuple[FavoriteRef, ...]:
    merged: List[FavoriteRef] = list(target)
    seen = {fav.ad_id for fav in merged}
    for fav in source:
        if fav.ad_id not in seen:
            merged.append(fav)
            seen.add(fav.ad_id)
    return tuple(merged)


def promote_role(target: UserRole, source: UserRole) -> UserRole:
    """Role the merge target ends up with.

    An administrative source role always carries over, even onto an admin
    target. A seller source promotes a buyer target.
    """
    if source in ADMIN_ROLES:
        return source
    if source == UserRole.SELLER and target == UserRole.BUYER:
        return UserRole.SELLER
    return target


def attach_verified_phone(user: UserDto, phone: str, now: datetime) -> UserDto:
    user = replace(user, phone=phone, phone_verified=True, updated_at=now)
    return with_provider_link(user, ProviderKind.SMS, phone, now)


def toggle_favorite(user: UserDto, ad_id: str, now: datetime) -> Tuple[UserDto, bool]:
    """Add ``ad_id`` to favorites, or remove it if present. Returns (user, added)."""
    if any(fav.ad_id == ad_id for fav in user.favorites):
        favorites = tuple(fav for fav in user.favorites if fav.ad_id != ad_id)
        added = False
    else:
        favorites = user.favorites + (FavoriteRef(ad_id=ad_id, added_at=now),)
        added = True
    return replace(user, favorites=favorites, favorites_count=len(favorites), updated_at=now), added
