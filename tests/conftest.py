from types import SimpleNamespace

import pytest

from fakes import BOT_TOKEN, SESSION_SECRET, FakeClock, RecordingAudit, RecordingTransport
from market_identity.application.services.auth_service import AuthOrchestrator
from market_identity.application.services.identity_resolver import PhoneIdentityResolver, TelegramIdentityResolver
from market_identity.application.services.merge_engine import AccountMergeEngine
from market_identity.application.services.otp_service import OneTimeCodeService
from market_identity.application.services.signature_verifier import TelegramSignatureVerifier
from market_identity.application.services.token_service import SessionTokenService
from market_identity.core.config import TelegramSettings, TokenSettings
from market_identity.infrastructure.persistence.memory.memory_repositories import (
    InMemoryOneTimeCodeRepository,
    InMemoryOwnershipRewriter,
    InMemoryUserRepository,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def verifier():
    return TelegramSignatureVerifier(TelegramSettings(bot_token=BOT_TOKEN))


@pytest.fixture
def tokens():
    return SessionTokenService(TokenSettings(secret=SESSION_SECRET))


@pytest.fixture
def env(clock, verifier, tokens):
    """Orchestrator wired to in-memory adapters, a fake clock and a recording transport."""
    users = InMemoryUserRepository()
    codes = InMemoryOneTimeCodeRepository(clock=clock)
    ownership = InMemoryOwnershipRewriter()
    transport = RecordingTransport()
    audit = RecordingAudit()
    otp = OneTimeCodeService(code_repo=codes, transport=transport, clock=clock)
    auth = AuthOrchestrator(
        user_repo=users,
        codes=otp,
        tokens=tokens,
        telegram_resolver=TelegramIdentityResolver(users, verifier, clock=clock),
        phone_resolver=PhoneIdentityResolver(users, clock=clock),
        merge_engine=AccountMergeEngine(users, ownership, clock=clock),
        audit_logger=audit,
        clock=clock,
    )
    return SimpleNamespace(
        users=users, codes=codes, ownership=ownership, transport=transport,
        audit=audit, otp=otp, auth=auth, clock=clock, tokens=tokens,
    )
