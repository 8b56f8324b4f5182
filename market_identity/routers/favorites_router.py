# market_identity/routers/favorites_router.py
from typing import Optional

from fastapi import APIRouter, Depends, Path, Request
from sqlmodel import Session

from ..application.ports.user_repo import UserDto
from ..application.services.favorites_service import FavoritesService
from ..exceptions import create_success_response
from ..schemas import ErrorResponse, FavoritesResponse, FavoriteToggleResponse, SuccessResponse
from .auth_router import get_current_user, get_db_session

router = APIRouter(
    prefix="/favorites",
    tags=["Favorites"],
    responses={status: {"model": ErrorResponse} for status in (401, 404, 500)},
)


def get_favorites_service(request: Request, session: Optional[Session] = Depends(get_db_session)) -> FavoritesService:
    return request.app.state.container.build_favorites_service(session)


@router.get("", response_model=SuccessResponse)
def list_favorites(current_user: UserDto = Depends(get_current_user)):
    return create_success_response(FavoritesResponse.from_dto(current_user).model_dump(mode="json"))


@router.post("/{ad_id}/toggle", response_model=SuccessResponse)
def toggle_favorite(
    ad_id: str = Path(..., min_length=1, max_length=64),
    current_user: UserDto = Depends(get_current_user),
    favorites: FavoritesService = Depends(get_favorites_service),
):
    user = favorites.toggle(current_user.id, ad_id)
    body = FavoriteToggleResponse(
        ad_id=ad_id,
        is_favorite=any(fav.ad_id == ad_id for fav in user.favorites),
        favorites_count=user.favorites_count,
    )
    return create_success_response(body.model_dump(mode="json"))
