import datetime as dt
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.db import SessionLocal, store_guard
from authgate.core.errors import InvalidOrExpiredCode, StoreUnavailable
from authgate.services import credentials, otp

log = logging.getLogger(__name__)


async def request_email_verification(db: AsyncSession, email: str, now: dt.datetime | None = None) -> None:
    async with store_guard("credentials.find_by_email"):
        async with db.begin():
            user = await credentials.find_by_email(db, email)
    if user is None or user.email_verified:
        return
    result = await otp.issue(db, email, otp.PURPOSE_EMAIL_VERIFICATION, now=now)
    if not result.dispatched:
        log.warning("verification code not delivered", extra={"user_id": user.id})


async def run_request_email_verification(email: str) -> None:
    async with SessionLocal() as db:
        try:
            await request_email_verification(db, email)
        except StoreUnavailable:
            log.error("verification request dropped, store unavailable")


async def verify_email(db: AsyncSession, email: str, code: str, now: dt.datetime | None = None) -> None:
    if not await otp.validate_and_consume(db, email, otp.PURPOSE_EMAIL_VERIFICATION, code, now=now):
        raise InvalidOrExpiredCode()
    async with store_guard("credentials.mark_email_verified"):
        async with db.begin():
            user = await credentials.find_by_email(db, email)
            if user is None or not await credentials.mark_email_verified(db, user.id):
                raise InvalidOrExpiredCode()
