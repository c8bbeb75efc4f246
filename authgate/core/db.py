import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from authgate.core.config import settings
from authgate.core.errors import StoreUnavailable

log = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # aiosqlite connections must not outlive the event loop that opened them
        return {"poolclass": NullPool}
    return {"pool_pre_ping": True, "pool_recycle": 3600}


engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)
Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as db:
        yield db


@asynccontextmanager
async def store_guard(operation: str) -> AsyncIterator[None]:
    """Bound a store call in time and reduce its failures to StoreUnavailable."""
    try:
        async with asyncio.timeout(settings.store_timeout_seconds):
            yield
    except TimeoutError:
        log.error("store call timed out", extra={"operation": operation})
        raise StoreUnavailable(operation)
    except SQLAlchemyError:
        log.exception("store call failed", extra={"operation": operation})
        raise StoreUnavailable(operation)
