from datetime import timedelta

import pytest

from fakes import ExplodingTransport, FakeClock, RecordingTransport
from market_identity.application.ports.otp_repo import CodePurpose
from market_identity.application.services.otp_service import OneTimeCodeService
from market_identity.exceptions import (
    CodeExpiredError,
    InvalidCodeError,
    InvalidPhoneError,
    MaxAttemptsExceededError,
    TooManyRequestsError,
)
from market_identity.infrastructure.persistence.memory.memory_repositories import InMemoryOneTimeCodeRepository

PHONE = "+375291111111"


def build(transport=None, clock=None):
    clock = clock or FakeClock()
    repo = InMemoryOneTimeCodeRepository(clock=clock)
    transport = transport or RecordingTransport()
    service = OneTimeCodeService(code_repo=repo, transport=transport, clock=clock)
    return service, repo, transport, clock


def wrong_code(code: str) -> str:
    return "000000" if code != "000000" else "111111"


def test_request_stores_and_sends_code():
    service, repo, transport, clock = build()

    issued = service.request("+375 (29) 111-11-11", CodePurpose.LOGIN)

    assert issued.phone == PHONE
    assert issued.delivered is True
    assert issued.expires_at == clock.now + timedelta(seconds=300)
    assert not hasattr(issued, "code")
    (stored,) = repo.all()
    assert stored.purpose == CodePurpose.LOGIN
    assert transport.sent == [(PHONE, stored.code)]
    assert len(stored.code) == 6 and stored.code.isdigit()


def test_second_request_within_cooldown_is_rejected():
    service, _, _, clock = build()
    service.request(PHONE, "login")

    clock.advance(20)
    with pytest.raises(TooManyRequestsError) as exc:
        service.request(PHONE, "login")
    assert exc.value.extra["retry_after"] == 40
    assert exc.value.headers["Retry-After"] == "40"
    assert exc.value.status_code == 429


def test_cooldown_is_per_purpose():
    service, repo, _, _ = build()
    service.request(PHONE, CodePurpose.LOGIN)
    service.request(PHONE, CodePurpose.LINK_PHONE)
    assert {c.purpose for c in repo.all()} == {CodePurpose.LOGIN, CodePurpose.LINK_PHONE}


def test_new_code_after_cooldown_supersedes_previous():
    service, repo, transport, clock = build()
    service.request(PHONE, "login")
    first = transport.last_code(PHONE)

    clock.advance(61)
    service.request(PHONE, "login")
    second = transport.last_code(PHONE)

    (stored,) = repo.all()
    assert stored.code == second
    if first != second:
        with pytest.raises(InvalidCodeError):
            service.verify(PHONE, first, "login")


def test_wrong_attempts_then_correct_code_then_replay():
    service, repo, transport, _ = build()
    service.request(PHONE, "login")
    code = transport.last_code(PHONE)

    for expected_left in (4, 3, 2):
        with pytest.raises(InvalidCodeError) as exc:
            service.verify(PHONE, wrong_code(code), "login")
        assert exc.value.extra["attempts_left"] == expected_left
    assert repo.all()[0].attempts == 3

    verified = service.verify(PHONE, code, "login")
    assert verified.verified is True
    assert verified.phone == PHONE

    with pytest.raises(CodeExpiredError):
        service.verify(PHONE, code, "login")


def test_fifth_wrong_attempt_exhausts_the_code():
    service, _, transport, _ = build()
    service.request(PHONE, "login")
    code = transport.last_code(PHONE)

    for _ in range(4):
        with pytest.raises(InvalidCodeError):
            service.verify(PHONE, wrong_code(code), "login")
    with pytest.raises(InvalidCodeError) as exc:
        service.verify(PHONE, wrong_code(code), "login")
    assert exc.value.extra["attempts_left"] == 0

    with pytest.raises(MaxAttemptsExceededError):
        service.verify(PHONE, code, "login")


def test_expired_code_is_rejected():
    service, _, transport, clock = build()
    service.request(PHONE, "login")
    code = transport.last_code(PHONE)

    clock.advance(300)
    with pytest.raises(CodeExpiredError) as exc:
        service.verify(PHONE, code, "login")
    assert exc.value.error == "code_expired"


def test_expired_code_does_not_block_a_new_request():
    service, _, _, clock = build(clock=FakeClock())
    service.cooldown_seconds = 600
    service.request(PHONE, "login")
    clock.advance(301)
    assert service.request(PHONE, "login").phone == PHONE


def test_code_is_bound_to_purpose():
    service, _, transport, _ = build()
    service.request(PHONE, "login")
    with pytest.raises(CodeExpiredError):
        service.verify(PHONE, transport.last_code(PHONE), "link_phone")


def test_unknown_phone_has_no_code():
    service, _, _, _ = build()
    with pytest.raises(CodeExpiredError):
        service.verify("+375299999999", "123456", "login")


def test_transport_failure_keeps_code_but_reports_undelivered():
    service, repo, _, _ = build(transport=RecordingTransport(ok=False))
    issued = service.request(PHONE, "login")
    assert issued.delivered is False
    assert len(repo.all()) == 1


def test_transport_exception_is_contained():
    service, repo, _, _ = build(transport=ExplodingTransport())
    assert service.request(PHONE, "login").delivered is False
    assert len(repo.all()) == 1


def test_link_code_is_bound_to_requesting_user():
    service, _, transport, _ = build()
    service.request(PHONE, "link-phone", owner_id="user-a")
    code = transport.last_code(PHONE)

    with pytest.raises(InvalidCodeError):
        service.verify(PHONE, code, "link_phone", owner_id="user-b")
    assert service.verify(PHONE, code, "link_phone", owner_id="user-a").owner_id == "user-a"


def test_invalid_phone_stores_nothing():
    service, repo, transport, _ = build()
    with pytest.raises(InvalidPhoneError):
        service.request("12-34", "login")
    assert repo.all() == []
    assert transport.sent == []
