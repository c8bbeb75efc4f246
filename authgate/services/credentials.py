from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.errors import EmailTaken
from authgate.models.user import User


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def find_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def create_user(db: AsyncSession, *, email: str, name: str | None, password_hash: str) -> User:
    if await find_by_email(db, email) is not None:
        raise EmailTaken(email)
    user = User(email=normalize_email(email), name=name, password_hash=password_hash)
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as exc:
        # lost a race with a concurrent sign-up for the same address
        raise EmailTaken(email) from exc
    return user


async def update_password(db: AsyncSession, user_id: str, new_hash: str) -> bool:
    user = await db.get(User, user_id)
    if user is None:
        return False
    user.password_hash = new_hash
    await db.flush()
    return True


async def mark_email_verified(db: AsyncSession, user_id: str) -> bool:
    user = await db.get(User, user_id)
    if user is None:
        return False
    user.email_verified = True
    await db.flush()
    return True
