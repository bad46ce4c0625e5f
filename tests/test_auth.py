"""Tests for registration (OTP flow), login, token refresh and password reset."""
import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from parley.config import settings
from parley.errors import DependencyError
from parley.models.user import PasswordReset, User, UserVerification
from tests.conftest import SENT_OTPS, SENT_RESETS, auth_headers, register_user


async def _request_otp(client: AsyncClient, email: str) -> str:
    resp = await client.post("/api/auth/register", json={"email": email})
    assert resp.status_code == 201, resp.text
    return resp.json()["otp_token"]


@pytest.mark.asyncio
async def test_register_sends_otp(client: AsyncClient, otp_outbox):
    resp = await client.post("/api/auth/register", json={"email": "alice@example.com"})
    assert resp.status_code == 201
    data = resp.json()
    assert len(data["otp_token"]) == 40
    assert data["otp_expires"]
    assert data["otp_request_cooldown"] == settings.otp_cooldown_seconds

    otp_outbox.assert_awaited_once()
    otp = SENT_OTPS["alice@example.com"]
    assert len(otp) == 6 and otp.isdigit()


@pytest.mark.asyncio
async def test_full_registration_flow(client: AsyncClient, db_session):
    data = await register_user(client, username="alice", email="alice@example.com")
    assert data["access_token"]
    assert data["token_type"] == "bearer"
    assert data["user"]["username"] == "alice"
    assert data["user"]["email"] == "alice@example.com"
    assert data["user"]["is_verified"] is True
    assert len(data["user"]["id"]) == 24

    remaining = await db_session.execute(select(func.count(UserVerification.id)))
    assert remaining.scalar_one() == 0


@pytest.mark.asyncio
async def test_register_verified_email_conflicts(client: AsyncClient):
    await register_user(client, username="bob", email="bob@example.com")
    resp = await client.post("/api/auth/register", json={"email": "bob@example.com"})
    assert resp.status_code == 409
    assert resp.json()["kind"] == "conflict"


@pytest.mark.asyncio
async def test_register_again_inside_cooldown_is_rate_limited(client: AsyncClient):
    await _request_otp(client, "carol@example.com")
    resp = await client.post("/api/auth/register", json={"email": "carol@example.com"})
    assert resp.status_code == 429
    assert resp.json()["kind"] == "rate_limited"


@pytest.mark.asyncio
async def test_resend_otp(client: AsyncClient, otp_outbox, monkeypatch):
    otp_token = await _request_otp(client, "dave@example.com")

    resp = await client.post(
        "/api/auth/register/resend-otp",
        json={"email": "dave@example.com"},
        headers={"X-OTP-Token": otp_token},
    )
    assert resp.status_code == 429

    monkeypatch.setattr(settings, "otp_cooldown_seconds", 0)
    resp = await client.post(
        "/api/auth/register/resend-otp",
        json={"email": "dave@example.com"},
        headers={"X-OTP-Token": otp_token},
    )
    assert resp.status_code == 200
    assert resp.json()["otp_token"] == otp_token
    assert otp_outbox.await_count == 2


@pytest.mark.asyncio
async def test_resend_otp_requires_matching_token(client: AsyncClient):
    await _request_otp(client, "erin@example.com")
    resp = await client.post(
        "/api/auth/register/resend-otp",
        json={"email": "erin@example.com"},
        headers={"X-OTP-Token": "f" * 40},
    )
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "otp_token"


@pytest.mark.asyncio
async def test_verify_wrong_otp(client: AsyncClient):
    otp_token = await _request_otp(client, "frank@example.com")
    wrong = "000000" if SENT_OTPS["frank@example.com"] != "000000" else "111111"
    resp = await client.post(
        "/api/auth/register/verify",
        json={"email": "frank@example.com", "otp": wrong},
        headers={"X-OTP-Token": otp_token},
    )
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "otp"


@pytest.mark.asyncio
async def test_verify_expired_otp(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "otp_expire_minutes", -1)
    otp_token = await _request_otp(client, "gina@example.com")
    resp = await client.post(
        "/api/auth/register/verify",
        json={"email": "gina@example.com", "otp": SENT_OTPS["gina@example.com"]},
        headers={"X-OTP-Token": otp_token},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "OTP has expired"


@pytest.mark.asyncio
async def test_verify_requires_otp_header(client: AsyncClient):
    await _request_otp(client, "hank@example.com")
    resp = await client.post(
        "/api/auth/register/verify",
        json={"email": "hank@example.com", "otp": SENT_OTPS["hank@example.com"]},
    )
    assert resp.status_code == 400
    assert resp.json()["kind"] == "validation_error"


@pytest.mark.asyncio
async def test_complete_with_invalid_info_token(client: AsyncClient):
    resp = await client.post(
        "/api/auth/register/complete",
        json={"username": "ivan", "password": "Test1234!"},
        headers={"X-Info-Token": "a" * 40},
    )
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "info_token"


@pytest.mark.asyncio
async def test_complete_with_taken_username(client: AsyncClient):
    await register_user(client, username="judy", email="judy@example.com")
    otp_token = await _request_otp(client, "judy2@example.com")
    resp = await client.post(
        "/api/auth/register/verify",
        json={"email": "judy2@example.com", "otp": SENT_OTPS["judy2@example.com"]},
        headers={"X-OTP-Token": otp_token},
    )
    info_token = resp.json()["info_token"]

    resp = await client.post(
        "/api/auth/register/complete",
        json={"username": "judy", "password": "Test1234!"},
        headers={"X-Info-Token": info_token},
    )
    assert resp.status_code == 409
    assert resp.json()["errors"][0]["field"] == "username"


@pytest.mark.asyncio
async def test_smtp_failure_rolls_back(client: AsyncClient, otp_outbox, db_session):
    otp_outbox.side_effect = DependencyError("Failed to send OTP, please try again")
    resp = await client.post("/api/auth/register", json={"email": "kate@example.com"})
    assert resp.status_code == 503
    assert resp.json()["kind"] == "dependency_error"

    users = await db_session.execute(select(func.count(User.id)))
    assert users.scalar_one() == 0


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient):
    await register_user(client, username="leo", email="leo@example.com")
    resp = await client.post(
        "/api/auth/login",
        json={"email": "leo@example.com", "password": "Test1234!"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["access_token"]
    assert data["user"]["username"] == "leo"


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient):
    await register_user(client, username="mia", email="mia@example.com")
    resp = await client.post(
        "/api/auth/login",
        json={"email": "mia@example.com", "password": "falsch123"},
    )
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_login_unverified_user(client: AsyncClient):
    await _request_otp(client, "ned@example.com")
    resp = await client.post(
        "/api/auth/login",
        json={"email": "ned@example.com", "password": "whatever1"},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_user_exists(client: AsyncClient):
    await register_user(client, username="olga", email="olga@example.com")
    await _request_otp(client, "pending@example.com")

    resp = await client.get("/api/auth/user-exists", params={"username": "olga"})
    assert resp.json() == {"exists": True}
    resp = await client.get("/api/auth/user-exists", params={"email": "olga@example.com"})
    assert resp.json() == {"exists": True}
    resp = await client.get("/api/auth/user-exists", params={"email": "pending@example.com"})
    assert resp.json() == {"exists": False}

    resp = await client.get("/api/auth/user-exists")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_token_grants_access(client: AsyncClient):
    data = await register_user(client, username="pia", email="pia@example.com")
    resp = await client.get("/api/profile/me", headers=auth_headers(data["access_token"]))
    assert resp.status_code == 200
    assert resp.json()["id"] == data["user"]["id"]


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_refresh_token_issues_new_tokens(client: AsyncClient):
    data = await register_user(client, username="quinn", email="quinn@example.com")
    assert data["refresh_token"] != data["access_token"]
    assert data["refresh_expires"] > data["access_expires"]

    resp = await client.post(
        "/api/auth/refresh-token", headers=auth_headers(data["refresh_token"])
    )
    assert resp.status_code == 200
    refreshed = resp.json()
    assert refreshed["user"]["id"] == data["user"]["id"]

    resp = await client.get("/api/profile/me", headers=auth_headers(refreshed["access_token"]))
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_tokens_are_not_interchangeable(client: AsyncClient):
    data = await register_user(client, username="rita", email="rita@example.com")

    resp = await client.post(
        "/api/auth/refresh-token", headers=auth_headers(data["access_token"])
    )
    assert resp.status_code == 401
    resp = await client.get("/api/profile/me", headers=auth_headers(data["refresh_token"]))
    assert resp.status_code == 401
    resp = await client.post("/api/auth/refresh-token")
    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

async def _login(client: AsyncClient, email: str, password: str) -> int:
    resp = await client.post("/api/auth/login", json={"email": email, "password": password})
    return resp.status_code


@pytest.mark.asyncio
async def test_password_reset_with_otp(client: AsyncClient, db_session):
    await register_user(client, username="sam", email="sam@example.com")
    resp = await client.post("/api/auth/forgot-password", json={"email": "sam@example.com"})
    assert resp.status_code == 200
    data = resp.json()
    reset_token = data["reset_token"]
    assert len(reset_token) == 40
    assert data["request_cooldown"] == settings.otp_cooldown_seconds
    otp = SENT_RESETS["sam@example.com"]["otp"]
    assert len(otp) == 6 and otp.isdigit()

    headers = {"X-Reset-Token": reset_token}
    resp = await client.post(
        "/api/auth/reset-password", json={"new_password": "Brand-new-9"}, headers=headers
    )
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "otp"

    wrong = "000000" if otp != "000000" else "111111"
    resp = await client.post(
        "/api/auth/reset-password",
        json={"new_password": "Brand-new-9", "otp": wrong},
        headers=headers,
    )
    assert resp.status_code == 400

    resp = await client.post(
        "/api/auth/reset-password",
        json={"new_password": "Brand-new-9", "otp": otp},
        headers=headers,
    )
    assert resp.status_code == 204

    assert await _login(client, "sam@example.com", "Test1234!") == 401
    assert await _login(client, "sam@example.com", "Brand-new-9") == 200
    remaining = await db_session.execute(select(func.count(PasswordReset.id)))
    assert remaining.scalar_one() == 0

    # the token is single use
    resp = await client.post(
        "/api/auth/reset-password",
        json={"new_password": "Another-one-9", "otp": otp},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "reset_token"


@pytest.mark.asyncio
async def test_password_reset_with_link(client: AsyncClient):
    await register_user(client, username="tina", email="tina@example.com")
    resp = await client.post(
        "/api/auth/forgot-password", json={"email": "tina@example.com", "method": "link"}
    )
    assert resp.status_code == 200
    assert resp.json()["reset_token"] is None

    sent = SENT_RESETS["tina@example.com"]
    assert sent["otp"] is None
    assert sent["link"].startswith(settings.reset_url)
    reset_token = sent["link"].split("token=", 1)[1]

    resp = await client.post(
        "/api/auth/reset-password",
        json={"new_password": "Link-reset-9"},
        headers={"X-Reset-Token": reset_token},
    )
    assert resp.status_code == 204
    assert await _login(client, "tina@example.com", "Link-reset-9") == 200


@pytest.mark.asyncio
async def test_forgot_password_unknown_or_unverified_email(client: AsyncClient):
    resp = await client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    assert resp.status_code == 404

    await _request_otp(client, "halfway@example.com")
    resp = await client.post("/api/auth/forgot-password", json={"email": "halfway@example.com"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_forgot_password_cooldown(client: AsyncClient, monkeypatch):
    await register_user(client, username="uma", email="uma@example.com")
    resp = await client.post("/api/auth/forgot-password", json={"email": "uma@example.com"})
    first_token = resp.json()["reset_token"]

    resp = await client.post("/api/auth/forgot-password", json={"email": "uma@example.com"})
    assert resp.status_code == 429
    assert resp.json()["kind"] == "rate_limited"

    monkeypatch.setattr(settings, "otp_cooldown_seconds", 0)
    resp = await client.post("/api/auth/forgot-password", json={"email": "uma@example.com"})
    assert resp.status_code == 200
    assert resp.json()["reset_token"] != first_token

    # a new request invalidates the previous token
    resp = await client.post(
        "/api/auth/reset-password",
        json={"new_password": "Brand-new-9", "otp": SENT_RESETS["uma@example.com"]["otp"]},
        headers={"X-Reset-Token": first_token},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_expired_reset_token(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "reset_token_expire_minutes", -1)
    await register_user(client, username="vera", email="vera@example.com")
    resp = await client.post("/api/auth/forgot-password", json={"email": "vera@example.com"})

    resp = await client.post(
        "/api/auth/reset-password",
        json={"new_password": "Brand-new-9", "otp": SENT_RESETS["vera@example.com"]["otp"]},
        headers={"X-Reset-Token": resp.json()["reset_token"]},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid or expired password reset token"


@pytest.mark.asyncio
async def test_reset_smtp_failure_rolls_back(client: AsyncClient, reset_outbox, db_session):
    await register_user(client, username="walt", email="walt@example.com")
    reset_outbox.side_effect = DependencyError(
        "Failed to send password reset email, please try again"
    )
    resp = await client.post("/api/auth/forgot-password", json={"email": "walt@example.com"})
    assert resp.status_code == 503

    remaining = await db_session.execute(select(func.count(PasswordReset.id)))
    assert remaining.scalar_one() == 0
