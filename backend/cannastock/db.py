import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from .config import get_settings


logger = logging.getLogger(__name__)

settings = get_settings()

engine = create_async_engine(settings.database_url, echo=False, future=True)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


class Base(DeclarativeBase):
    pass


async def get_session() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC. Aware values are converted, naive ones are taken as UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@asynccontextmanager
async def tx(db: AsyncSession):
    """
    Transaction helper tolerant to autobegin.
    If no transaction is active, opens one via begin().
    If a transaction is already active (autobegin after a SELECT),
    performs work and commits/rolls back manually.
    """
    if not db.in_transaction():
        async with db.begin():
            yield
    else:
        try:
            yield
            await db.commit()
        except Exception:
            await db.rollback()
            raise
