# market_identity/schemas/common/common.py
from pydantic import BaseModel
from typing import Any, Optional


class ErrorResponse(BaseModel):
    success: bool = False
    data: Optional[Any] = None
    error: str
    message: str
    retry_after: Optional[int] = None
    attempts_left: Optional[int] = None


class SuccessResponse(BaseModel):
    success: bool = True
    data: Any
    error: Optional[str] = None
