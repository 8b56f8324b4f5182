import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from .application.ports.audit_logger import AuditLogger
from .application.ports.code_transport import CodeTransport
from .application.services.auth_service import AuthOrchestrator
from .application.services.favorites_service import FavoritesService
from .application.services.identity_resolver import PhoneIdentityResolver, TelegramIdentityResolver
from .application.services.merge_engine import AccountMergeEngine
from .application.services.otp_service import OneTimeCodeService
from .application.services.signature_verifier import TelegramSignatureVerifier
from .application.services.token_service import SessionTokenService
from .core.config import ConfigurationError, Settings
from .database import build_engine, create_db_and_tables
from .infrastructure.audit.std_logger import StdAuditLogger
from .infrastructure.persistence.memory.memory_repositories import (
    InMemoryOneTimeCodeRepository,
    InMemoryOwnershipRewriter,
    InMemoryUserRepository,
)
from .infrastructure.persistence.sqlalchemy.repositories.otp_repository_sql import SqlOneTimeCodeRepository
from .infrastructure.persistence.sqlalchemy.repositories.ownership_repository_sql import SqlOwnershipRewriter
from .infrastructure.persistence.sqlalchemy.repositories.user_repository_sql import SqlUserRepository
from .infrastructure.sms.log_transport import LoggingCodeTransport
from .infrastructure.sms.twilio_transport import TwilioCodeTransport

logger = logging.getLogger(__name__)


@dataclass
class MemoryStores:
    users: InMemoryUserRepository = field(default_factory=InMemoryUserRepository)
    codes: InMemoryOneTimeCodeRepository = field(default_factory=InMemoryOneTimeCodeRepository)
    ownership: InMemoryOwnershipRewriter = field(default_factory=InMemoryOwnershipRewriter)


@dataclass
class Container:
    """Process-wide collaborators; per-request services are built around a DB session."""

    settings: Settings
    tokens: SessionTokenService
    verifier: TelegramSignatureVerifier
    transport: CodeTransport
    audit_logger: AuditLogger
    engine: Optional[Engine] = None
    memory: Optional[MemoryStores] = None

    def build_favorites_service(self, session: Optional[Session] = None) -> FavoritesService:
        if self.memory is not None:
            return FavoritesService(user_repo=self.memory.users)
        if session is None:
            raise RuntimeError("SQL storage backend requires a database session")
        return FavoritesService(user_repo=SqlUserRepository(session))

    def build_auth_service(self, session: Optional[Session] = None) -> AuthOrchestrator:
        if self.memory is not None:
            users, codes, ownership = self.memory.users, self.memory.codes, self.memory.ownership
        else:
            if session is None:
                raise RuntimeError("SQL storage backend requires a database session")
            users = SqlUserRepository(session)
            codes = SqlOneTimeCodeRepository(session)
            ownership = SqlOwnershipRewriter(session, timeout_ms=self.settings.OWNERSHIP_REWRITE_TIMEOUT_MS)

        s = self.settings
        return AuthOrchestrator(
            user_repo=users,
            codes=OneTimeCodeService(
                code_repo=codes,
                transport=self.transport,
                code_length=s.OTP_CODE_LENGTH,
                ttl_seconds=s.OTP_TTL_SECONDS,
                cooldown_seconds=s.OTP_COOLDOWN_SECONDS,
                max_attempts=s.OTP_MAX_ATTEMPTS,
            ),
            tokens=self.tokens,
            telegram_resolver=TelegramIdentityResolver(users, self.verifier),
            phone_resolver=PhoneIdentityResolver(users),
            merge_engine=AccountMergeEngine(users, ownership),
            audit_logger=self.audit_logger,
        )


def build_transport(settings: Settings) -> CodeTransport:
    if settings.SMS_BACKEND == "twilio":
        if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_PHONE_NUMBER):
            raise ConfigurationError("SMS_BACKEND=twilio requires TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER")
        return TwilioCodeTransport.from_settings(settings)
    if settings.SMS_BACKEND == "log":
        logger.warning("SMS backend is 'log': codes are not delivered to phones")
        return LoggingCodeTransport()
    raise ConfigurationError(f"Unknown SMS_BACKEND {settings.SMS_BACKEND!r}")


def build_container(settings: Settings) -> Container:
    # Token and signature settings validate their secrets on construction.
    container = Container(
        settings=settings,
        tokens=SessionTokenService(settings.token_settings()),
        verifier=TelegramSignatureVerifier(settings.telegram_settings()),
        transport=build_transport(settings),
        audit_logger=StdAuditLogger(),
    )
    if settings.STORAGE_BACKEND == "memory":
        container.memory = MemoryStores()
    elif settings.STORAGE_BACKEND == "sql":
        container.engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
        create_db_and_tables(container.engine)
    else:
        raise ConfigurationError(f"Unknown STORAGE_BACKEND {settings.STORAGE_BACKEND!r}")
    return container
