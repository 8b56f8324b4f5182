# market_identity/db/models/auth/otp.py
from sqlalchemy import Column, DateTime
from sqlmodel import SQLModel, Field
from datetime import datetime
from typing import Optional
import uuid

from ....utils import utcnow

class OTPCode(SQLModel, table=True):
    __tablename__ = "otp_codes"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    phone: str = Field(max_length=20, index=True)
    code: str = Field(max_length=10)
    purpose: str = Field(max_length=16, index=True)  # 'login' or 'link_phone'
    verified: bool = Field(default=False)
    attempts: int = Field(default=0)
    owner_id: Optional[str] = Field(max_length=36, default=None)
    platform: Optional[str] = Field(max_length=20, default=None)
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=False), nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False, index=True))
