from typing import Protocol


class OwnershipRewriter(Protocol):
    """Owner of records keyed by a user's id, app-level id or telegram id (listings)."""

    def reassign_owner(self, from_key: str, to_key: str) -> int:
        """Move every record owned by ``from_key`` to ``to_key``; returns the number updated."""
        ...

    def commit(self) -> None:
        """Keep the reassignments made since the last commit or rollback."""
        ...

    def rollback(self) -> None:
        """Undo the reassignments made since the last commit or rollback."""
        ...
