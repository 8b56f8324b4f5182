import pytest
from fastapi.testclient import TestClient

from fakes import BOT_TOKEN, SESSION_SECRET, make_init_data
from market_identity.core.config import ConfigurationError, load_settings
from market_identity.main import create_app

PHONE = "+375291111111"


def make_client(**overrides):
    settings = load_settings({
        "SESSION_SECRET": SESSION_SECRET,
        "TELEGRAM_BOT_TOKEN": BOT_TOKEN,
        "STORAGE_BACKEND": "memory",
        "SMS_BACKEND": "log",
        **overrides,
    })
    app = create_app(settings)
    return TestClient(app), app


@pytest.fixture
def client():
    return make_client()


def last_code(app, phone=PHONE):
    return next(code for p, code in reversed(app.state.container.transport.sent) if p == phone)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_health(client):
    http, _ = client
    assert http.get("/health").json()["status"] == "ok"


def test_phone_login_flow(client):
    http, app = client

    resp = http.post("/auth/phone/request-code", json={"phone": "+375 (29) 111-11-11"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["error"] is None
    assert body["data"]["phone"] == PHONE
    assert body["data"]["delivered"] is True
    assert "code" not in body["data"]
    assert resp.headers["Cache-Control"] == "no-store"

    resp = http.post("/auth/phone/verify", json={"phone": PHONE, "code": last_code(app)})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["merged"] is False
    assert data["user"]["phone"] == PHONE
    assert data["user"]["auth_providers"] == ["sms"]

    me = http.get("/auth/me", headers=bearer(data["token"]))
    assert me.status_code == 200
    assert me.json()["data"]["id"] == data["user"]["id"]


def test_wrong_code_reports_attempts_left(client):
    http, app = client
    http.post("/auth/phone/request-code", json={"phone": PHONE})
    wrong = "000000" if last_code(app) != "000000" else "111111"

    resp = http.post("/auth/phone/verify", json={"phone": PHONE, "code": wrong})

    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "data": None,
        "error": "invalid_code",
        "message": "Code is incorrect",
        "attempts_left": 4,
    }


def test_repeat_request_is_throttled(client):
    http, _ = client
    assert http.post("/auth/phone/request-code", json={"phone": PHONE}).status_code == 200

    resp = http.post("/auth/phone/request-code", json={"phone": PHONE})

    assert resp.status_code == 429
    assert resp.json()["error"] == "too_many_requests"
    assert 1 <= int(resp.headers["Retry-After"]) <= 60
    assert resp.json()["retry_after"] == int(resp.headers["Retry-After"])


def test_invalid_phone(client):
    http, _ = client
    resp = http.post("/auth/phone/request-code", json={"phone": "12-34-56"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_phone"


def test_telegram_login_and_invalid_signature(client):
    http, _ = client

    ok = http.post("/auth/telegram", json={"init_data": make_init_data(telegram_id=1001, username="alice")})
    assert ok.status_code == 200
    assert ok.json()["data"]["user"]["telegram_linked"] is True
    assert ok.json()["data"]["user"]["username"] == "alice"

    bad = http.post("/auth/telegram", json={"init_data": make_init_data(bot_token="1:wrong")})
    assert bad.status_code == 401
    assert bad.json()["error"] == "invalid_init_data"


def test_me_requires_token(client):
    http, _ = client
    assert http.get("/auth/me").status_code == 401
    resp = http.get("/auth/me", headers=bearer("not-a-token"))
    assert resp.status_code == 401
    assert resp.json()["error"] == "invalid_token"


def test_link_phone_merges_phone_account(client):
    http, app = client
    http.post("/auth/phone/request-code", json={"phone": PHONE})
    phone_login = http.post("/auth/phone/verify", json={"phone": PHONE, "code": last_code(app)}).json()["data"]

    tg = http.post("/auth/telegram", json={"init_data": make_init_data(telegram_id=1001)}).json()["data"]
    token = tg["token"]

    resp = http.post("/auth/phone/link/request-code", json={"phone": PHONE}, headers=bearer(token))
    assert resp.status_code == 200
    resp = http.post("/auth/phone/link", json={"phone": PHONE, "code": last_code(app)}, headers=bearer(token))

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["merged"] is True
    assert data["merged_from_id"] == phone_login["user"]["id"]
    assert data["user"]["id"] == tg["user"]["id"]
    assert sorted(data["user"]["auth_providers"]) == ["sms", "telegram"]
    assert http.get("/auth/me", headers=bearer(phone_login["token"])).status_code == 401


def test_link_requires_authentication(client):
    http, _ = client
    resp = http.post("/auth/phone/link", json={"phone": PHONE, "code": "123456"})
    assert resp.status_code == 401


def test_favorite_toggle_flow(client):
    http, _ = client
    token = http.post("/auth/telegram", json={"init_data": make_init_data(telegram_id=1001)}).json()["data"]["token"]

    added = http.post("/favorites/ad-17/toggle", headers=bearer(token))
    assert added.status_code == 200
    assert added.json()["data"] == {"ad_id": "ad-17", "is_favorite": True, "favorites_count": 1}

    http.post("/favorites/ad-18/toggle", headers=bearer(token))
    removed = http.post("/favorites/ad-17/toggle", headers=bearer(token)).json()["data"]
    assert removed == {"ad_id": "ad-17", "is_favorite": False, "favorites_count": 1}

    listed = http.get("/favorites", headers=bearer(token)).json()["data"]
    assert listed == {"ad_ids": ["ad-18"], "favorites_count": 1}


def test_favorites_follow_the_account_on_link(client):
    http, app = client
    http.post("/auth/phone/request-code", json={"phone": PHONE})
    phone_token = http.post("/auth/phone/verify", json={"phone": PHONE, "code": last_code(app)}).json()["data"]["token"]
    http.post("/favorites/ad-1/toggle", headers=bearer(phone_token))

    token = http.post("/auth/telegram", json={"init_data": make_init_data(telegram_id=1001)}).json()["data"]["token"]
    http.post("/favorites/ad-2/toggle", headers=bearer(token))
    http.post("/auth/phone/link/request-code", json={"phone": PHONE}, headers=bearer(token))
    http.post("/auth/phone/link", json={"phone": PHONE, "code": last_code(app)}, headers=bearer(token))

    listed = http.get("/favorites", headers=bearer(token)).json()["data"]
    assert listed == {"ad_ids": ["ad-2", "ad-1"], "favorites_count": 2}
    assert http.post("/favorites/ad-3/toggle", headers=bearer(phone_token)).status_code == 401


def test_favorites_require_authentication(client):
    http, _ = client
    assert http.post("/favorites/ad-1/toggle").status_code == 401
    assert http.get("/favorites").status_code == 401


def test_sql_backend_phone_login():
    http, app = make_client(STORAGE_BACKEND="sql", DATABASE_URL="sqlite://")
    http.post("/auth/phone/request-code", json={"phone": PHONE})

    resp = http.post("/auth/phone/verify", json={"phone": PHONE, "code": last_code(app)})

    assert resp.status_code == 200
    token = resp.json()["data"]["token"]
    assert http.get("/auth/me", headers=bearer(token)).json()["data"]["phone"] == PHONE


@pytest.mark.parametrize("overrides", [
    {"SESSION_SECRET": "short", "TELEGRAM_BOT_TOKEN": BOT_TOKEN},
    {"SESSION_SECRET": SESSION_SECRET, "TELEGRAM_BOT_TOKEN": ""},
    {"SESSION_SECRET": SESSION_SECRET, "TELEGRAM_BOT_TOKEN": BOT_TOKEN, "SMS_BACKEND": "twilio"},
])
def test_bad_configuration_fails_at_startup(overrides):
    with pytest.raises(ConfigurationError):
        create_app(load_settings({"STORAGE_BACKEND": "memory", **overrides}))
