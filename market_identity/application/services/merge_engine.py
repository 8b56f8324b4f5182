import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from ...utils import utcnow
from ..ports.ownership import OwnershipRewriter
from ..ports.user_repo import UserDto, UserRepository
from .user_records import MERGEABLE_FIELDS, promote_role, union_favorites, union_provider_links

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergePlan:
    target: UserDto
    source: UserDto
    ownership_moves: Tuple[Tuple[str, str], ...]


def _copy_missing_fields(target: UserDto, source: UserDto) -> UserDto:
    changes = {
        name: getattr(source, name)
        for name in MERGEABLE_FIELDS
        if getattr(source, name) and not getattr(target, name)
    }
    return replace(target, **changes) if changes else target


def _ownership_moves(source: UserDto, merged: UserDto) -> Tuple[Tuple[str, str], ...]:
    """Every key dependent records may reference the source by, mapped to the target's."""
    moves: List[Tuple[str, str]] = [(source.id, merged.id)]
    if source.app_user_id:
        moves.append((source.app_user_id, merged.app_user_id or merged.id))
    if source.telegram_id is not None:
        to_key = str(merged.telegram_id) if merged.telegram_id is not None else merged.id
        moves.append((str(source.telegram_id), to_key))

    unique: List[Tuple[str, str]] = []
    for move in moves:
        if move[0] != move[1] and move not in unique:
            unique.append(move)
    return tuple(unique)


def build_merge_plan(source: UserDto, target: UserDto, now: datetime) -> MergePlan:
    """Fold ``source`` into ``target`` without touching storage.

    Applied in order: field copy, provider-link union, favorites union,
    role promotion, merge bookkeeping.
    """
    merged = _copy_missing_fields(target, source)
    merged = replace(merged, auth_providers=union_provider_links(merged.auth_providers, source.auth_providers))

    favorites = union_favorites(merged.favorites, source.favorites)
    merged = replace(merged, favorites=favorites, favorites_count=len(favorites))

    merged = replace(merged, role=promote_role(merged.role, source.role))

    merged_from = merged.merged_from if source.id in merged.merged_from else merged.merged_from + (source.id,)
    merged = replace(merged, merged_from=merged_from, updated_at=now)
    retired = replace(source, merged_into=merged.id, is_active=False, updated_at=now)

    return MergePlan(target=merged, source=retired, ownership_moves=_ownership_moves(source, merged))


class AccountMergeEngine:
    """Reconciles two users into the caller's own account (the target)."""

    def __init__(self, user_repo: UserRepository, ownership: OwnershipRewriter,
                 clock: Callable[[], datetime] = utcnow):
        self.user_repo = user_repo
        self.ownership = ownership
        self.clock = clock

    def merge(self, source: UserDto, target: UserDto) -> Optional[UserDto]:
        """Merge ``source`` into ``target`` and return the new target.

        Returns None without writing anything when the source is no longer an
        active, canonical user (already merged, or merged by a concurrent
        request), so a retry degenerates into the no-merge path.
        """
        if source.id == target.id:
            return None
        fresh = self.user_repo.find_by_id(source.id)
        if fresh is None or not fresh.is_canonical or fresh.id in target.merged_from:
            logger.info(f"Skipping merge of {source.id} into {target.id}: source no longer active")
            return None

        plan = build_merge_plan(fresh, target, self.clock())
        logger.info(f"Merging user {fresh.id} into {target.id}")

        try:
            for from_key, to_key in plan.ownership_moves:
                moved = self.ownership.reassign_owner(from_key, to_key)
                logger.info(f"Reassigned {moved} records from {from_key} to {to_key}")

            # Target first, then source: the source is deactivated last.
            self.user_repo.save_many([plan.target, plan.source])
        except Exception:
            logger.warning(f"Merge of {fresh.id} into {target.id} failed, restoring ownership")
            self.ownership.rollback()
            raise
        self.ownership.commit()
        logger.info(f"Merge complete: {fresh.id} -> {target.id}")
        return plan.target
