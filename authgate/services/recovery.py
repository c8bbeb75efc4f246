"""Password reset: request a code, then commit a new password with it.

Nothing is held between the two calls except the code row. The code is
checked and spent in one step when the new password is committed, so there is
no "verified but unused" state to replay.
"""

import datetime as dt
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.db import SessionLocal, store_guard
from authgate.core.errors import InvalidOrExpiredCode, StoreUnavailable
from authgate.models.user import User
from authgate.services import audit, credentials, otp, password as password_service, session as session_service

log = logging.getLogger(__name__)


async def request_reset(db: AsyncSession, email: str, now: dt.datetime | None = None) -> None:
    async with store_guard("credentials.find_by_email"):
        async with db.begin():
            user = await credentials.find_by_email(db, email)
    if user is None:
        log.info("reset requested for an unknown address")
        return

    result = await otp.issue(db, email, otp.PURPOSE_FORGET_PASSWORD, now=now)
    if not result.dispatched:
        log.warning("reset code not delivered", extra={"user_id": user.id})
    async with store_guard("audit.record_event"):
        async with db.begin():
            await audit.record_event(db, user_id=user.id, event="reset.request")


async def run_request_reset(email: str) -> None:
    """Background entry point; failures stay on the server side."""
    async with SessionLocal() as db:
        try:
            await request_reset(db, email)
        except StoreUnavailable:
            log.error("reset request dropped, store unavailable")


async def commit_reset(
    db: AsyncSession,
    email: str,
    code: str,
    new_password: str,
    *,
    ip: str | None = None,
    user_agent: str | None = None,
    now: dt.datetime | None = None,
) -> User:
    password_service.enforce_policy(new_password)

    if not await otp.validate_and_consume(db, email, otp.PURPOSE_FORGET_PASSWORD, code, now=now):
        raise InvalidOrExpiredCode()

    # From here on the code is spent. A failed write means the caller must
    # request a new code; it is never retried with this one.
    async with store_guard("credentials.find_by_email"):
        async with db.begin():
            user = await credentials.find_by_email(db, email)
    if user is None:
        raise InvalidOrExpiredCode()

    new_hash = password_service.hash_password(new_password)
    user_id = user.id
    async with store_guard("credentials.update_password"):
        async with db.begin():
            if not await credentials.update_password(db, user_id, new_hash):
                raise InvalidOrExpiredCode()
            await audit.record_event(
                db, user_id=user_id, event="reset.finish", ip=ip, user_agent=user_agent
            )

    # the sweep runs in its own session so a rollback there leaves ``user`` loaded
    try:
        async with SessionLocal() as sweep_db:
            async with store_guard("session.invalidate_all"):
                async with sweep_db.begin():
                    revoked = await session_service.invalidate_all(sweep_db, user_id, now=now)
    except StoreUnavailable:
        log.error("session sweep after reset failed", extra={"user_id": user_id})
    else:
        log.info("password reset", extra={"user_id": user_id, "sessions_revoked": revoked})
    return user
