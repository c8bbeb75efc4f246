import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="authgate-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR}/test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("MAIL__SUPPRESS_SEND", "true")

import httpx
import pytest
import pytest_asyncio

from authgate.core.db import Base, SessionLocal, engine
from authgate.services import credentials, email as email_service, otp, session as session_service
from authgate.services.password import hash_password
from main import app as main_app

ORIGINAL_PASSWORD = "original-pass1"


@pytest_asyncio.fixture
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest_asyncio.fixture
async def db(database):
    async with SessionLocal() as session:
        yield session


@pytest.fixture
def outbox(monkeypatch):
    """Codes that would have been mailed, in send order."""
    sent = []

    async def fake_send_code(email, code, purpose, ttl_minutes):
        sent.append({"email": email, "code": code, "purpose": purpose})

    monkeypatch.setattr(email_service, "send_code", fake_send_code)
    return sent


@pytest.fixture
def fixed_code(monkeypatch):
    monkeypatch.setattr(otp, "_generate_otp", lambda: "123456")
    return "123456"


@pytest_asyncio.fixture
async def account(db):
    async with db.begin():
        user = await credentials.create_user(
            db, email="a@x.com", name="Alice", password_hash=hash_password(ORIGINAL_PASSWORD)
        )
        token = await session_service.create_session(db, user_id=user.id)
    return {"user": user, "token": token, "password": ORIGINAL_PASSWORD}


@pytest_asyncio.fixture
async def client(database):
    transport = httpx.ASGITransport(app=main_app)
    async with httpx.AsyncClient(transport=transport, base_url="https://testserver") as c:
        yield c
