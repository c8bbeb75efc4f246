import asyncio

import httpx
import pytest
from sqlalchemy.exc import SQLAlchemyError

from authgate.core.config import settings
from authgate.core.errors import StoreUnavailable
from authgate.services import credentials, otp, password as password_service, session as session_service
from main import app as main_app

SIGN_UP = {
    "name": "Bob",
    "email": "bob@x.com",
    "password": "longenough1",
    "confirmPassword": "longenough1",
    "terms": True,
}


async def _sign_in(client, email="a@x.com", password="original-pass1", remember=False):
    return await client.post(
        "/auth/sign-in", json={"email": email, "password": password, "rememberMe": remember}
    )


@pytest.mark.asyncio
async def test_otp_send_is_uniform(client, account, outbox):
    known = await client.post("/auth/otp/send", json={"email": "a@x.com", "type": "forget-password"})
    unknown = await client.post("/auth/otp/send", json={"email": "ghost@x.com", "type": "forget-password"})

    assert known.status_code == unknown.status_code == 202
    assert known.json() == unknown.json()
    assert [m["email"] for m in outbox] == ["a@x.com"]


@pytest.mark.asyncio
async def test_otp_send_hides_store_failures(client, account, outbox, monkeypatch):
    async def broken_issue(db, email, purpose, now=None):
        raise StoreUnavailable("otp.issue")

    monkeypatch.setattr(otp, "issue", broken_issue)
    resp = await client.post("/auth/otp/send", json={"email": "a@x.com", "type": "forget-password"})
    assert resp.status_code == 202


@pytest.mark.asyncio
async def test_reset_password_over_http(client, account, outbox, fixed_code):
    signed_in = await _sign_in(client)
    assert signed_in.status_code == 200
    assert (await client.get("/dashboard")).status_code == 200

    await client.post("/auth/otp/send", json={"email": "a@x.com", "type": "forget-password"})
    resp = await client.post(
        "/auth/otp/reset-password",
        json={"email": "a@x.com", "otp": fixed_code, "password": "longenough1"},
    )
    assert resp.status_code == 200

    resp = await client.get("/dashboard")
    assert resp.status_code == 302
    assert (await _sign_in(client, password="original-pass1")).status_code == 401
    assert (await _sign_in(client, password="longenough1")).status_code == 200


@pytest.mark.asyncio
async def test_bad_code_is_opaque(client, account, outbox, fixed_code):
    await client.post("/auth/otp/send", json={"email": "a@x.com", "type": "forget-password"})
    wrong = await client.post(
        "/auth/otp/reset-password", json={"email": "a@x.com", "otp": "000000", "password": "longenough1"}
    )
    unknown = await client.post(
        "/auth/otp/reset-password", json={"email": "ghost@x.com", "otp": "123456", "password": "longenough1"}
    )
    assert wrong.status_code == unknown.status_code == 400
    assert wrong.json() == unknown.json() == {"error": "InvalidOrExpiredCode"}


@pytest.mark.asyncio
async def test_short_password_reports_field(client, account, outbox, fixed_code):
    resp = await client.post(
        "/auth/otp/reset-password", json={"email": "a@x.com", "otp": fixed_code, "password": "short"}
    )
    assert resp.status_code == 422
    assert "password" in resp.json()["errors"]


@pytest.mark.asyncio
async def test_store_failure_is_generic_5xx(client, account, monkeypatch):
    async def broken_validate(db, email, purpose, code, now=None):
        raise StoreUnavailable("otp.validate_and_consume")

    monkeypatch.setattr(otp, "validate_and_consume", broken_validate)
    resp = await client.post(
        "/auth/otp/reset-password", json={"email": "a@x.com", "otp": "123456", "password": "longenough1"}
    )
    assert resp.status_code == 503
    assert "otp" not in resp.text


@pytest.mark.asyncio
async def test_sign_up_reports_every_field(client):
    resp = await client.post(
        "/auth/sign-up",
        json={"name": " ", "email": "nope", "password": "short", "confirmPassword": "other", "terms": False},
    )
    assert resp.status_code == 400
    assert set(resp.json()["errors"]) == {"name", "email", "password", "confirmPassword", "terms"}


@pytest.mark.asyncio
async def test_sign_up_starts_a_session(client):
    resp = await client.post("/auth/sign-up", json=SIGN_UP)
    assert resp.status_code == 200
    assert resp.json()["data"]["email"] == "bob@x.com"
    assert settings.session_cookie_name in resp.cookies

    session = await client.get("/auth/session")
    assert session.json()["data"]["email"] == "bob@x.com"


@pytest.mark.asyncio
async def test_duplicate_sign_up_conflicts(client):
    assert (await client.post("/auth/sign-up", json=SIGN_UP)).status_code == 200
    resp = await client.post("/auth/sign-up", json={**SIGN_UP, "email": "BOB@x.com"})
    assert resp.status_code == 409
    assert "email" in resp.json()["errors"]


@pytest.mark.asyncio
async def test_sign_in_failure_is_generic(client, account):
    wrong_password = await _sign_in(client, password="not-the-password")
    no_account = await _sign_in(client, email="ghost@x.com")
    assert wrong_password.status_code == no_account.status_code == 401
    assert wrong_password.json() == no_account.json()


@pytest.mark.asyncio
async def test_sign_out_ends_session(client, account):
    signed_in = await _sign_in(client, remember=True)
    csrf = signed_in.headers[settings.csrf_header_name]
    assert (await client.get("/dashboard")).status_code == 200

    assert (await client.post("/auth/sign-out")).status_code == 403
    resp = await client.post("/auth/sign-out", headers={settings.csrf_header_name: csrf})
    assert resp.status_code == 204

    assert (await client.get("/dashboard")).status_code == 302
    assert (await client.get("/auth/session")).json()["data"] is None


@pytest.mark.asyncio
async def test_email_verification(client, account, outbox, fixed_code):
    await client.post("/auth/otp/send", json={"email": "a@x.com", "type": "email-verification"})
    assert outbox[0]["purpose"] == otp.PURPOSE_EMAIL_VERIFICATION

    wrong = await client.post("/auth/otp/verify-email", json={"email": "a@x.com", "otp": "000000"})
    assert wrong.status_code == 400
    ok = await client.post("/auth/otp/verify-email", json={"email": "a@x.com", "otp": fixed_code})
    assert ok.status_code == 200

    await _sign_in(client)
    assert (await client.get("/auth/session")).json()["data"]["emailVerified"] is True


@pytest.mark.asyncio
async def test_plain_http_is_refused(database):
    transport = httpx.ASGITransport(app=main_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as plain:
        resp = await plain.get("/health")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert "strict-transport-security" in resp.headers


@pytest.mark.asyncio
async def test_sign_in_verifies_hash_for_unknown_address(client, account, monkeypatch):
    checked = []
    real_verify = password_service.verify_password

    def counting_verify(password_hash, password):
        checked.append(password_hash)
        return real_verify(password_hash, password)

    monkeypatch.setattr(password_service, "verify_password", counting_verify)
    assert (await _sign_in(client, password="not-the-password")).status_code == 401
    assert (await _sign_in(client, email="ghost@x.com")).status_code == 401

    assert checked == [account["user"].password_hash, password_service.DUMMY_HASH]


@pytest.mark.asyncio
async def test_slow_store_is_a_503(client, account, monkeypatch):
    async def slow_find_by_email(db, email):
        await asyncio.sleep(1)

    monkeypatch.setattr(settings, "store_timeout_seconds", 0.05)
    monkeypatch.setattr(credentials, "find_by_email", slow_find_by_email)
    resp = await _sign_in(client)
    assert resp.status_code == 503
    assert resp.json()["error"] == "ServiceUnavailable"


@pytest.mark.asyncio
async def test_failed_credential_write_needs_new_code(client, account, outbox, fixed_code, monkeypatch):
    async def broken_update_password(db, user_id, new_hash):
        raise SQLAlchemyError("users table unavailable")

    await client.post("/auth/otp/send", json={"email": "a@x.com", "type": "forget-password"})
    body = {"email": "a@x.com", "otp": fixed_code, "password": "longenough1"}
    with monkeypatch.context() as patched:
        patched.setattr(credentials, "update_password", broken_update_password)
        failed = await client.post("/auth/otp/reset-password", json=body)
    assert failed.status_code == 503
    assert "users" not in failed.text

    retried = await client.post("/auth/otp/reset-password", json=body)
    assert retried.status_code == 400
    assert retried.json() == {"error": "InvalidOrExpiredCode"}
    assert (await _sign_in(client)).status_code == 200


@pytest.mark.asyncio
async def test_failed_session_sweep_still_resets(client, account, outbox, fixed_code, monkeypatch):
    async def broken_invalidate_all(db, user_id, now=None):
        raise SQLAlchemyError("sessions table unavailable")

    monkeypatch.setattr(session_service, "invalidate_all", broken_invalidate_all)
    await client.post("/auth/otp/send", json={"email": "a@x.com", "type": "forget-password"})
    resp = await client.post(
        "/auth/otp/reset-password",
        json={"email": "a@x.com", "otp": fixed_code, "password": "longenough1"},
    )
    assert resp.status_code == 200
    assert (await _sign_in(client, password="longenough1")).status_code == 200
