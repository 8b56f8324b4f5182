# Routers package
from . import auth_router, favorites_router

__all__ = [
    "auth_router",
    "favorites_router",
]
