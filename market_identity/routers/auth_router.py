# market_identity/routers/auth_router.py
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from ..application.ports.user_repo import UserDto
from ..application.services.auth_service import AuthOrchestrator, AuthResult
from ..exceptions import InvalidTokenError, create_success_response
from ..schemas import (
    AuthResponse,
    ErrorResponse,
    LinkPhoneRequest,
    RequestCodeRequest,
    RequestCodeResponse,
    SuccessResponse,
    TelegramLoginRequest,
    UserResponse,
    VerifyCodeRequest,
)

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    responses={status: {"model": ErrorResponse} for status in (400, 401, 404, 429, 500)},
)
bearer = HTTPBearer(auto_error=False)


def get_db_session(request: Request) -> Iterator[Optional[Session]]:
    engine = request.app.state.container.engine
    if engine is None:
        yield None
        return
    with Session(engine) as session:
        yield session


def get_auth_service(request: Request, session: Optional[Session] = Depends(get_db_session)) -> AuthOrchestrator:
    return request.app.state.container.build_auth_service(session)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    auth: AuthOrchestrator = Depends(get_auth_service),
) -> UserDto:
    if credentials is None:
        raise InvalidTokenError()
    user = auth.get_current_user(credentials.credentials)
    if user is None:
        raise InvalidTokenError("Session token is invalid or expired")
    return user


def _auth_payload(result: AuthResult) -> dict:
    body = AuthResponse(
        token=result.token,
        user=UserResponse.from_dto(result.user),
        merged=result.merged,
        merged_from_id=result.merged_from_id,
    )
    return create_success_response(body.model_dump(mode="json"))


@router.post("/telegram", response_model=SuccessResponse)
def login_telegram(payload: TelegramLoginRequest, auth: AuthOrchestrator = Depends(get_auth_service)):
    return _auth_payload(auth.login_via_chat_app(payload.init_data, payload.phone))


@router.post("/phone/request-code", response_model=SuccessResponse)
def request_code(payload: RequestCodeRequest, auth: AuthOrchestrator = Depends(get_auth_service)):
    issued = auth.request_phone_code(payload.phone, payload.purpose, platform=payload.platform)
    body = RequestCodeResponse(phone=issued.phone, expires_at=issued.expires_at, delivered=issued.delivered)
    return create_success_response(body.model_dump(mode="json"))


@router.post("/phone/link/request-code", response_model=SuccessResponse)
def request_link_code(
    payload: RequestCodeRequest,
    current_user: UserDto = Depends(get_current_user),
    auth: AuthOrchestrator = Depends(get_auth_service),
):
    issued = auth.request_phone_code(payload.phone, "link_phone", owner_id=current_user.id, platform=payload.platform)
    body = RequestCodeResponse(phone=issued.phone, expires_at=issued.expires_at, delivered=issued.delivered)
    return create_success_response(body.model_dump(mode="json"))


@router.post("/phone/verify", response_model=SuccessResponse)
def verify_code(payload: VerifyCodeRequest, auth: AuthOrchestrator = Depends(get_auth_service)):
    return _auth_payload(auth.verify_phone_code(payload.phone, payload.code))


@router.post("/phone/link", response_model=SuccessResponse)
def link_phone(
    payload: LinkPhoneRequest,
    current_user: UserDto = Depends(get_current_user),
    auth: AuthOrchestrator = Depends(get_auth_service),
):
    return _auth_payload(auth.link_phone(current_user.id, payload.phone, payload.code))


@router.get("/me", response_model=SuccessResponse)
def me(current_user: UserDto = Depends(get_current_user)):
    return create_success_response(UserResponse.from_dto(current_user).model_dump(mode="json"))
