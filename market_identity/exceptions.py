import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class APIException(HTTPException):
    def __init__(self, status_code: int, detail: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class AuthError(APIException):
    """An expected authentication failure with a stable machine-readable code."""

    status_code_default = 400

    def __init__(self, error: str, message: Optional[str] = None, status_code: Optional[int] = None,
                 headers: Optional[Dict[str, str]] = None, **extra: Any):
        self.error = error
        self.message = message or error.replace("_", " ").capitalize()
        self.extra = {k: v for k, v in extra.items() if v is not None}
        super().__init__(
            status_code=status_code or self.status_code_default,
            detail=self.message,
            headers=headers,
        )


class InvalidInitDataError(AuthError):
    status_code_default = 401

    def __init__(self, error: str = "invalid_init_data", message: Optional[str] = None):
        super().__init__(error, message or "Telegram init data is invalid")


class InvalidPhoneError(AuthError):
    def __init__(self, message: str = "Phone number must contain 10 to 15 digits"):
        super().__init__("invalid_phone", message)


class TooManyRequestsError(AuthError):
    status_code_default = 429

    def __init__(self, retry_after: int):
        super().__init__(
            "too_many_requests",
            "A code was requested recently, try again later",
            headers={"Retry-After": str(retry_after)},
            retry_after=retry_after,
        )


class CodeExpiredError(AuthError):
    def __init__(self):
        super().__init__("code_expired", "Code has expired or was already used, request a new one")


class InvalidCodeError(AuthError):
    def __init__(self, attempts_left: int):
        super().__init__("invalid_code", "Code is incorrect", attempts_left=attempts_left)


class MaxAttemptsExceededError(AuthError):
    status_code_default = 429

    def __init__(self):
        super().__init__("max_attempts_exceeded", "Too many wrong attempts, request a new code")


class UserNotFoundError(AuthError):
    status_code_default = 404

    def __init__(self):
        super().__init__("user_not_found", "User not found")


class InvalidTokenError(AuthError):
    status_code_default = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__("invalid_token", message)


class InternalError(AuthError):
    status_code_default = 500

    def __init__(self):
        super().__init__("internal_error", "Internal server error")


def create_error_response(error: str, message: str, **extra: Any) -> dict:
    """Create a standardized error response"""
    return {
        "success": False,
        "data": None,
        "error": error,
        "message": message,
        **extra,
    }


def create_success_response(data: Any) -> dict:
    """Create a standardized success response"""
    return {
        "success": True,
        "data": data,
        "error": None,
    }


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.error, exc.message, **exc.extra),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Custom exception handler for HTTPException"""
    # Convert 403 from HTTPBearer to 401 for missing authentication
    if exc.status_code == 403 and "Not authenticated" in str(exc.detail):
        return JSONResponse(
            status_code=401,
            content=create_error_response("invalid_token", "Authentication required"),
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response("http_error", str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=create_error_response("internal_error", "Internal server error"),
    )
