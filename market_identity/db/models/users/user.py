# market_identity/db/models/users/user.py
from typing import Optional, List
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, BigInteger, DateTime, JSON
from datetime import datetime
import uuid

from ....utils import utcnow

class User(SQLModel, table=True):
    __tablename__ = "users"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    telegram_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, index=True, nullable=True))
    app_user_id: Optional[str] = Field(max_length=64, default=None, index=True)
    phone: Optional[str] = Field(max_length=20, default=None, index=True)
    phone_verified: bool = Field(default=False)
    username: Optional[str] = Field(max_length=100, default=None)
    first_name: Optional[str] = Field(max_length=100, default=None)
    last_name: Optional[str] = Field(max_length=100, default=None)
    role: str = Field(max_length=16, default="buyer")
    # [{"kind": "telegram", "provider_id": "...", "linked_at": "..."}]
    auth_providers: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    # [{"ad_id": "...", "added_at": "..."}]
    favorites: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    favorites_count: int = Field(default=0)
    is_active: bool = Field(default=True, index=True)
    merged_from: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    merged_into: Optional[str] = Field(max_length=36, default=None)
    # Naive UTC throughout; see utils.utcnow.
    last_active_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=False), nullable=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False))
