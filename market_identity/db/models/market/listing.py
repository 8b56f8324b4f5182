# market_identity/db/models/market/listing.py
from sqlalchemy import Column, DateTime
from sqlmodel import SQLModel, Field
from datetime import datetime
from typing import Optional
import uuid

from ....utils import utcnow

class Listing(SQLModel, table=True):
    """Ownership columns of the marketplace listings table.

    ``user_id`` holds an internal or app-level user id; ``seller_id`` holds the
    seller's telegram id (or internal id for users without telegram).
    """
    __tablename__ = "listings"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    title: str = Field(max_length=200, default="")
    user_id: Optional[str] = Field(max_length=64, default=None, index=True)
    seller_id: Optional[str] = Field(max_length=64, default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False))
