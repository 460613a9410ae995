"""
tests/test_auth_routes.py -- Integration tests for /api/v1/auth/* endpoints.

Covers:
  - register: 201 + session cookie, 400 missing/invalid fields, 409 duplicate
  - login: 200 + cookie, identical 401 for unknown email and wrong password
  - logout clears the cookie
  - send-verify-otp / verify-otp: auth requirement, session fallback, 400/410
  - send-reset-otp / reset-password: 404 unknown email, 410 after 16 minutes
  - error envelope shape and 400 for malformed bodies
"""

from __future__ import annotations

from auth.tokens import COOKIE_NAME

_ADA = {"name": "Ada", "email": "ADA@x.com", "password": "secret1"}


def _error(resp) -> dict:
    return resp.json()["error"]


# ---------------------------------------------------------------------------
# Register / login / logout
# ---------------------------------------------------------------------------


def test_ada_register_login_scenario(api_client):
    client, _, _ = api_client

    resp = client.post("/api/v1/auth/register", json=_ADA)
    assert resp.status_code == 201
    assert COOKIE_NAME in resp.cookies
    body = resp.json()
    assert body["account"]["email"] == "ada@x.com"
    assert body["account"]["isVerified"] is False
    assert body["expiresIn"] == 7 * 24 * 60 * 60
    assert "token" not in body
    assert resp.headers["cache-control"] == "no-store"

    client.cookies.clear()
    resp = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": "secret1"})
    assert resp.status_code == 200
    assert COOKIE_NAME in resp.cookies
    assert resp.json()["account"]["name"] == "Ada"

    resp = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": "wrong"})
    assert resp.status_code == 401
    assert _error(resp) == {"code": "bad_credentials", "message": "Invalid email or password.", "detail": None}


def test_register_cookie_is_httponly_and_strict(api_client):
    client, _, _ = api_client
    resp = client.post("/api/v1/auth/register", json=_ADA)
    header = resp.headers["set-cookie"]
    assert "HttpOnly" in header
    assert "SameSite=strict" in header
    assert "Max-Age=604800" in header


def test_register_session_reaches_protected_route(api_client):
    client, _, _ = api_client
    client.post("/api/v1/auth/register", json=_ADA)
    resp = client.get("/api/v1/user/me")
    assert resp.status_code == 200
    assert resp.json()["email"] == "ada@x.com"


def test_login_failures_are_indistinguishable(api_client, make_account):
    client, _, _ = api_client
    make_account(email="ada@x.com", password="secret1")
    wrong_password = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": "nope-nope"})
    unknown_email = client.post("/api/v1/auth/login", json={"email": "ghost@x.com", "password": "secret1"})
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json()
    assert COOKIE_NAME not in wrong_password.cookies


def test_register_duplicate_email_is_409(api_client):
    client, _, _ = api_client
    client.post("/api/v1/auth/register", json=_ADA)
    resp = client.post("/api/v1/auth/register", json={**_ADA, "email": " ada@X.COM "})
    assert resp.status_code == 409
    assert _error(resp)["code"] == "conflict"


def test_register_missing_fields_is_400(api_client):
    client, store, _ = api_client
    resp = client.post("/api/v1/auth/register", json={"email": "ada@x.com"})
    assert resp.status_code == 400
    assert _error(resp)["code"] == "missing_fields"
    assert store.list_accounts() == []


def test_business_registration_without_abn_is_400_and_not_stored(api_client):
    client, store, notifier = api_client
    resp = client.post(
        "/api/v1/auth/register",
        json={**_ADA, "role": "business", "businessName": "Lovelace Analytics", "businessAddress": "12 Engine Rd"},
    )
    assert resp.status_code == 400
    assert _error(resp)["code"] == "incomplete_business_profile"
    assert store.get_by_email("ada@x.com") is None
    assert notifier.sent == []


def test_business_registration_returns_profile(api_client):
    client, _, _ = api_client
    resp = client.post(
        "/api/v1/auth/register",
        json={
            **_ADA,
            "role": "business",
            "businessName": "Lovelace Analytics",
            "businessAddress": "12 Engine Rd",
            "businessAbn": "53004085616",
        },
    )
    assert resp.status_code == 201
    account = resp.json()["account"]
    assert account["role"] == "business"
    assert account["businessAbn"] == "53004085616"


def test_register_as_admin_is_rejected(api_client):
    client, store, _ = api_client
    resp = client.post("/api/v1/auth/register", json={**_ADA, "role": "admin"})
    assert resp.status_code == 400
    assert _error(resp)["code"] == "invalid_role"
    assert store.count_admins() == 0


def test_register_succeeds_when_mail_is_down(api_client):
    client, store, notifier = api_client
    notifier.fail = True
    resp = client.post("/api/v1/auth/register", json=_ADA)
    assert resp.status_code == 201
    assert store.get_by_email("ada@x.com") is not None


def test_malformed_body_is_400(api_client):
    client, _, _ = api_client
    resp = client.post("/api/v1/auth/register", json=["not", "an", "object"])
    assert resp.status_code == 400
    assert _error(resp)["code"] == "validation_error"


def test_logout_clears_cookie(api_client):
    client, _, _ = api_client
    client.post("/api/v1/auth/register", json=_ADA)
    resp = client.post("/api/v1/auth/logout")
    assert resp.status_code == 200
    assert resp.json() == {"message": "Logged out."}
    assert "Max-Age=0" in resp.headers["set-cookie"]
    assert client.get("/api/v1/user/me").status_code == 401


def test_logout_without_session_is_ok(api_client):
    client, _, _ = api_client
    assert client.post("/api/v1/auth/logout").status_code == 200


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


def test_send_verify_otp_requires_session(api_client):
    client, _, notifier = api_client
    resp = client.post("/api/v1/auth/send-verify-otp")
    assert resp.status_code == 401
    assert _error(resp)["code"] == "unauthorized"
    assert notifier.sent == []


def test_verify_with_session_only(api_client):
    client, store, notifier = api_client
    account_id = client.post("/api/v1/auth/register", json=_ADA).json()["account"]["id"]

    assert client.post("/api/v1/auth/send-verify-otp").status_code == 200
    code = notifier.last_code("verify")

    resp = client.post("/api/v1/auth/verify-otp", json={"otp": code})
    assert resp.status_code == 200
    assert store.get_by_id(account_id).is_verified is True
    assert client.get("/api/v1/user/me").json()["isVerified"] is True


def test_verify_with_user_id_and_no_session(api_client, make_account, login_as):
    client, store, notifier = api_client
    account = make_account(email="ada@x.com")
    login_as(client, account)
    client.post("/api/v1/auth/send-verify-otp")
    code = notifier.last_code("verify")

    client.cookies.clear()
    resp = client.post("/api/v1/auth/verify-otp", json={"userId": account.id, "otp": int(code)})
    assert resp.status_code == 200
    assert store.get_by_id(account.id).is_verified is True


def test_verify_wrong_code_is_400(api_client, make_account, login_as):
    client, _, notifier = api_client
    account = make_account(email="ada@x.com")
    login_as(client, account)
    client.post("/api/v1/auth/send-verify-otp")
    wrong = "0" * len(notifier.last_code("verify"))
    resp = client.post("/api/v1/auth/verify-otp", json={"userId": account.id, "otp": wrong})
    assert resp.status_code == 400
    assert _error(resp)["code"] == "invalid_otp"


def test_verify_code_reuse_is_400(api_client, make_account, login_as):
    client, _, notifier = api_client
    account = make_account(email="ada@x.com")
    login_as(client, account)
    client.post("/api/v1/auth/send-verify-otp")
    code = notifier.last_code("verify")
    assert client.post("/api/v1/auth/verify-otp", json={"otp": code}).status_code == 200
    resp = client.post("/api/v1/auth/verify-otp", json={"otp": code})
    assert resp.status_code == 400
    assert _error(resp)["code"] == "invalid_otp"


def test_verify_expired_code_is_410(api_client, make_account, login_as, clock):
    client, _, notifier = api_client
    account = make_account(email="ada@x.com")
    login_as(client, account)
    client.post("/api/v1/auth/send-verify-otp")
    code = notifier.last_code("verify")
    clock.advance(hours=25)
    resp = client.post("/api/v1/auth/verify-otp", json={"otp": code})
    assert resp.status_code == 410
    assert _error(resp)["code"] == "otp_expired"


def test_verify_without_user_or_session_is_400(api_client):
    client, _, _ = api_client
    resp = client.post("/api/v1/auth/verify-otp", json={"otp": "123456"})
    assert resp.status_code == 400
    assert _error(resp)["code"] == "missing_fields"


def test_send_verify_otp_when_already_verified_is_400(api_client, make_account, login_as):
    client, _, _ = api_client
    login_as(client, make_account(is_verified=True))
    resp = client.post("/api/v1/auth/send-verify-otp")
    assert resp.status_code == 400
    assert _error(resp)["code"] == "already_verified"


def test_send_verify_otp_succeeds_when_mail_is_down(api_client, make_account, login_as):
    client, store, notifier = api_client
    account = make_account()
    login_as(client, account)
    notifier.fail = True
    assert client.post("/api/v1/auth/send-verify-otp").status_code == 200
    assert not store.get_by_id(account.id).verify_otp.is_empty


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


def test_reset_password_flow(api_client, make_account):
    client, _, notifier = api_client
    make_account(email="ada@x.com", password="secret1")

    assert client.post("/api/v1/auth/send-reset-otp", json={"email": "Ada@x.com"}).status_code == 200
    code = notifier.last_code("reset")

    resp = client.post(
        "/api/v1/auth/reset-password",
        json={"email": "ada@x.com", "otp": code, "newPassword": "new-secret"},
    )
    assert resp.status_code == 200

    old = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": "secret1"})
    new = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": "new-secret"})
    assert old.status_code == 401
    assert new.status_code == 200


def test_send_reset_otp_unknown_email_is_404(api_client):
    client, _, notifier = api_client
    resp = client.post("/api/v1/auth/send-reset-otp", json={"email": "ghost@x.com"})
    assert resp.status_code == 404
    assert _error(resp)["code"] == "not_found"
    assert notifier.sent == []


def test_reset_after_16_minutes_is_410_and_password_unchanged(api_client, make_account, clock):
    client, _, notifier = api_client
    make_account(email="ada@x.com", password="secret1")
    client.post("/api/v1/auth/send-reset-otp", json={"email": "ada@x.com"})
    code = notifier.last_code("reset")

    clock.advance(minutes=16)
    resp = client.post(
        "/api/v1/auth/reset-password",
        json={"email": "ada@x.com", "otp": code, "newPassword": "new-secret"},
    )
    assert resp.status_code == 410
    login = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": "secret1"})
    assert login.status_code == 200


def test_reset_with_wrong_code_is_400(api_client, make_account):
    client, _, notifier = api_client
    make_account(email="ada@x.com")
    client.post("/api/v1/auth/send-reset-otp", json={"email": "ada@x.com"})
    wrong = "0" * len(notifier.last_code("reset"))
    resp = client.post(
        "/api/v1/auth/reset-password",
        json={"email": "ada@x.com", "otp": wrong, "newPassword": "new-secret"},
    )
    assert resp.status_code == 400
    assert _error(resp)["code"] == "invalid_otp"
