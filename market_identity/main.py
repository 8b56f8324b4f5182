import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

from .container import build_container
from .core.config import Settings, get_settings
from .exceptions import AuthError, auth_error_handler, http_exception_handler, unhandled_exception_handler
from .middleware import LoggingMiddleware, SecurityMiddleware
from .routers import auth_router, favorites_router

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=settings.LOG_FORMAT,
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. Missing secrets raise ConfigurationError here, at startup."""
    if settings is None:
        # Load environment variables as early as possible
        load_dotenv()
        settings = get_settings()
    configure_logging(settings)

    container = build_container(settings)
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} (storage={settings.STORAGE_BACKEND}, sms={settings.SMS_BACKEND})")

    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)
    app.state.container = container

    app.add_middleware(SecurityMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(auth_router.router)
    app.include_router(favorites_router.router)

    @app.get("/health")
    def health():
        return {"status": "ok", "version": settings.APP_VERSION}

    return app


def run() -> None:
    import uvicorn

    uvicorn.run("market_identity.main:create_app", factory=True, host="0.0.0.0", port=8000)
