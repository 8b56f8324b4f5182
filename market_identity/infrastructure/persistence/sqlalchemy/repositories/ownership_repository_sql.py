import logging

from sqlalchemy import or_, text
from sqlmodel import Session, select

from .....db.models import Listing
from .....application.ports.ownership import OwnershipRewriter

logger = logging.getLogger(__name__)


class SqlOwnershipRewriter(OwnershipRewriter):
    """Rewrites listing ownership inside the caller's session.

    Changes are flushed, not committed: the user writes that follow in the same
    session commit them, or roll them back on failure.
    """

    def __init__(self, session: Session, timeout_ms: int = 5000):
        self.session = session
        self.timeout_ms = timeout_ms

    def reassign_owner(self, from_key: str, to_key: str) -> int:
        self._apply_timeout()
        listings = self.session.exec(
            select(Listing).where(or_(Listing.user_id == from_key, Listing.seller_id == from_key))
        ).all()
        for listing in listings:
            if listing.user_id == from_key:
                listing.user_id = to_key
            if listing.seller_id == from_key:
                listing.seller_id = to_key
            self.session.add(listing)
        self.session.flush()
        return len(listings)

    def commit(self) -> None:
        # The user writes sharing this session commit the flushed rows.
        pass

    def rollback(self) -> None:
        self.session.rollback()

    def _apply_timeout(self) -> None:
        if self.timeout_ms and self.session.get_bind().dialect.name == "postgresql":
            self.session.connection().execute(text(f"SET LOCAL statement_timeout = {int(self.timeout_ms)}"))
