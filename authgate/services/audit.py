import hashlib

from sqlalchemy.ext.asyncio import AsyncSession

from authgate.models.audit import AuthAudit


def hash_ip(ip: str | None) -> str | None:
    if not ip:
        return None
    return hashlib.sha256(ip.encode()).hexdigest()


async def record_event(
    db: AsyncSession,
    *,
    user_id: str | None,
    event: str,
    ip: str | None = None,
    user_agent: str | None = None,
) -> None:
    audit = AuthAudit(user_id=user_id, event=event, ip_hash=hash_ip(ip), ua=user_agent)
    db.add(audit)
    await db.flush()
