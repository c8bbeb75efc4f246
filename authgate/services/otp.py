"""Short-lived numeric codes bound to an ``(email, purpose)`` pair.

Only an HMAC of each code is stored. At most one code per pair is active:
issuing supersedes the previous one. Checking a code and spending it is a
single conditional UPDATE, so a code can be accepted at most once even under
concurrent requests, and every miss is charged against the attempts cap in
the same statement that reads it.
"""

import datetime as dt
import hashlib
import hmac
import logging
import secrets
import string
from dataclasses import dataclass

from sqlalchemy import and_, update
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.config import settings
from authgate.core.db import store_guard
from authgate.core.errors import DispatchFailure
from authgate.models.one_time_code import OneTimeCode
from authgate.services import email as email_service
from authgate.services.credentials import normalize_email
from authgate.utils.clock import utcnow

log = logging.getLogger(__name__)

PURPOSE_FORGET_PASSWORD = "forget-password"
PURPOSE_EMAIL_VERIFICATION = "email-verification"
PURPOSES = frozenset({PURPOSE_FORGET_PASSWORD, PURPOSE_EMAIL_VERIFICATION})
CODE_LENGTH = 6


@dataclass(frozen=True)
class IssueResult:
    expires_at: dt.datetime
    dispatched: bool


def _generate_otp() -> str:
    return "".join(secrets.choice(string.digits) for _ in range(CODE_LENGTH))


def _digest(email: str, purpose: str, code: str) -> str:
    message = f"{purpose}:{email}:{code}".encode()
    return hmac.new(settings.secret_key.encode(), message, hashlib.sha256).hexdigest()


def _check_purpose(purpose: str) -> None:
    if purpose not in PURPOSES:
        raise ValueError(f"unknown code purpose {purpose!r}")


def _active(email: str, purpose: str, now: dt.datetime):
    return and_(
        OneTimeCode.email == email,
        OneTimeCode.purpose == purpose,
        OneTimeCode.consumed_at.is_(None),
        OneTimeCode.expires_at > now,
        OneTimeCode.attempts < settings.otp_max_attempts,
    )


async def issue(
    db: AsyncSession,
    email: str,
    purpose: str,
    now: dt.datetime | None = None,
) -> IssueResult:
    """Mint a code, supersede the previous one, and mail it.

    The code is committed before dispatch. A failed dispatch leaves it valid
    and is reported through ``IssueResult.dispatched``.
    """
    _check_purpose(purpose)
    if now is None:
        now = utcnow()
    email = normalize_email(email)
    code = _generate_otp()
    expires_at = now + dt.timedelta(seconds=settings.otp_ttl_seconds)

    async with store_guard("otp.issue"):
        async with db.begin():
            await db.execute(
                update(OneTimeCode)
                .where(
                    OneTimeCode.email == email,
                    OneTimeCode.purpose == purpose,
                    OneTimeCode.consumed_at.is_(None),
                )
                .values(consumed_at=now)
                .execution_options(synchronize_session=False)
            )
            db.add(
                OneTimeCode(
                    email=email,
                    purpose=purpose,
                    code_hash=_digest(email, purpose, code),
                    issued_at=now,
                    expires_at=expires_at,
                    attempts=0,
                )
            )

    try:
        await email_service.send_code(email, code, purpose, settings.otp_ttl_seconds // 60)
    except DispatchFailure:
        log.warning("code issued but not delivered", extra={"purpose": purpose})
        return IssueResult(expires_at=expires_at, dispatched=False)
    return IssueResult(expires_at=expires_at, dispatched=True)


async def validate_and_consume(
    db: AsyncSession,
    email: str,
    purpose: str,
    code: str,
    now: dt.datetime | None = None,
) -> bool:
    _check_purpose(purpose)
    if now is None:
        now = utcnow()
    email = normalize_email(email)

    async with store_guard("otp.validate_and_consume"):
        async with db.begin():
            consumed = await db.execute(
                update(OneTimeCode)
                .where(
                    _active(email, purpose, now),
                    OneTimeCode.code_hash == _digest(email, purpose, code),
                )
                .values(consumed_at=now)
                .execution_options(synchronize_session=False)
            )
            if consumed.rowcount == 1:
                return True
            await db.execute(
                update(OneTimeCode)
                .where(_active(email, purpose, now))
                .values(attempts=OneTimeCode.attempts + 1)
                .execution_options(synchronize_session=False)
            )
    return False
