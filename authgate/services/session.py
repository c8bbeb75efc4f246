import datetime as dt
import hashlib
import secrets
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.config import settings
from authgate.core.db import store_guard
from authgate.models.session import Session
from authgate.models.user import User
from authgate.services.audit import hash_ip
from authgate.utils.clock import utcnow


@dataclass(frozen=True)
class Identity:
    """The caller resolved from a session token, handed explicitly to handlers."""

    user_id: str
    email: str
    name: str | None
    email_verified: bool
    session_id: str


def _token_digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def session_ttl(remember_me: bool) -> dt.timedelta:
    if remember_me:
        return dt.timedelta(days=settings.remember_me_ttl_days)
    return dt.timedelta(hours=settings.session_ttl_hours)


async def create_session(
    db: AsyncSession,
    *,
    user_id: str,
    remember_me: bool = False,
    user_agent: str | None = None,
    ip: str | None = None,
    now: dt.datetime | None = None,
) -> str:
    """Persist a session and return the raw bearer token. Only its digest is stored."""
    if now is None:
        now = utcnow()
    token = secrets.token_urlsafe(32)
    session = Session(
        user_id=user_id,
        token_hash=_token_digest(token),
        remember_me=remember_me,
        user_agent=user_agent,
        ip_hash=hash_ip(ip),
        expires_at=now + session_ttl(remember_me),
    )
    db.add(session)
    await db.flush()
    return token


async def lookup_session(db: AsyncSession, token: str, now: dt.datetime | None = None) -> Session | None:
    if now is None:
        now = utcnow()
    result = await db.execute(
        select(Session).where(
            Session.token_hash == _token_digest(token),
            Session.revoked_at.is_(None),
            Session.expires_at > now,
        )
    )
    return result.scalar_one_or_none()


async def invalidate_session(db: AsyncSession, token: str, now: dt.datetime | None = None) -> bool:
    if now is None:
        now = utcnow()
    result = await db.execute(
        update(Session)
        .where(Session.token_hash == _token_digest(token), Session.revoked_at.is_(None))
        .values(revoked_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def invalidate_all(db: AsyncSession, user_id: str, now: dt.datetime | None = None) -> int:
    if now is None:
        now = utcnow()
    result = await db.execute(
        update(Session)
        .where(Session.user_id == user_id, Session.revoked_at.is_(None))
        .values(revoked_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def resolve_identity(db: AsyncSession, token: str, now: dt.datetime | None = None) -> Identity | None:
    async with store_guard("session.lookup"):
        async with db.begin():
            session = await lookup_session(db, token, now=now)
            if session is None:
                return None
            user = await db.get(User, session.user_id)
    if user is None:
        return None
    return Identity(
        user_id=user.id,
        email=user.email,
        name=user.name,
        email_verified=user.email_verified,
        session_id=session.id,
    )
