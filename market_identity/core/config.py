# market_identity/core/config.py
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_SECRET_LENGTH = 32


class ConfigurationError(RuntimeError):
    """Raised at startup when mandatory infrastructure configuration is missing."""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Application Settings
    APP_NAME: str = "Marketplace Identity API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database Settings
    DATABASE_URL: str = "sqlite:///./market_identity.db"
    STORAGE_BACKEND: str = "sql"  # sql | memory

    # Security Settings (no defaults: absence must fail startup)
    SESSION_SECRET: str = Field(..., min_length=MIN_SECRET_LENGTH)
    TELEGRAM_BOT_TOKEN: str = Field(..., min_length=1)
    JWT_ALGORITHM: str = "HS256"
    SESSION_TOKEN_TTL_DAYS: int = 30
    TELEGRAM_INITDATA_MAX_AGE_SECONDS: int = 60 * 60 * 24

    # One-time codes
    OTP_CODE_LENGTH: int = 6
    OTP_TTL_SECONDS: int = 5 * 60
    OTP_COOLDOWN_SECONDS: int = 60
    OTP_MAX_ATTEMPTS: int = 5

    # Account merge
    OWNERSHIP_REWRITE_TIMEOUT_MS: int = 5000

    # Code delivery
    SMS_BACKEND: str = "log"  # log | twilio
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""
    TWILIO_TIMEOUT_SECONDS: int = 15

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("STORAGE_BACKEND", "SMS_BACKEND")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()

    def token_settings(self) -> "TokenSettings":
        return TokenSettings(
            secret=self.SESSION_SECRET,
            algorithm=self.JWT_ALGORITHM,
            ttl=timedelta(days=self.SESSION_TOKEN_TTL_DAYS),
        )

    def telegram_settings(self) -> "TelegramSettings":
        return TelegramSettings(
            bot_token=self.TELEGRAM_BOT_TOKEN,
            max_age_seconds=self.TELEGRAM_INITDATA_MAX_AGE_SECONDS,
        )


@dataclass(frozen=True)
class TokenSettings:
    secret: str
    algorithm: str = "HS256"
    ttl: timedelta = timedelta(days=30)

    def __post_init__(self) -> None:
        if not self.secret or len(self.secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"SESSION_SECRET must be set with at least {MIN_SECRET_LENGTH} characters"
            )


@dataclass(frozen=True)
class TelegramSettings:
    bot_token: str
    max_age_seconds: int = 60 * 60 * 24

    def __post_init__(self) -> None:
        if not self.bot_token:
            raise ConfigurationError("TELEGRAM_BOT_TOKEN must be set")


@lru_cache()
def get_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def load_settings(overrides: Optional[dict] = None) -> Settings:
    """Build settings bypassing the cache; used by the app factory and tests."""
    try:
        return Settings(**(overrides or {}))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
