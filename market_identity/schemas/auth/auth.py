# market_identity/schemas/auth/auth.py
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime

from ...application.ports.otp_repo import CodePurpose
from ..users.user import UserResponse


class TelegramLoginRequest(BaseModel):
    init_data: str = Field(..., min_length=1, description="Raw Telegram Mini App initData string")
    phone: Optional[str] = Field(None, description="Phone already verified by the client channel")


class RequestCodeRequest(BaseModel):
    phone: str = Field(..., min_length=6)
    purpose: CodePurpose = CodePurpose.LOGIN
    platform: Optional[str] = Field(None, max_length=20)

    @field_validator("purpose", mode="before")
    @classmethod
    def parse_purpose(cls, v):
        return CodePurpose.parse(v) if v is not None else CodePurpose.LOGIN


class RequestCodeResponse(BaseModel):
    phone: str
    expires_at: datetime
    delivered: bool


class VerifyCodeRequest(BaseModel):
    phone: str = Field(..., min_length=6)
    code: str = Field(..., min_length=3, max_length=10)


class LinkPhoneRequest(VerifyCodeRequest):
    pass


class AuthResponse(BaseModel):
    token: str
    user: UserResponse
    merged: bool = False
    merged_from_id: Optional[str] = None
