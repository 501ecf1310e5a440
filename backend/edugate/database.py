"""Database engine, session factory, and the declarative base.

Tenancy is row-level: every scoped table carries a `school_id` and the
services filter on it explicitly. There is one metadata for Alembic.

Session dependency for FastAPI:
  - get_db()  → one transaction per request, committed on success
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from edugate.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=20,
    max_overflow=10,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """Yield a session whose work is committed when the request succeeds.

    Grant replacement, audit rows and outbox messages written during a
    request all land in this single transaction.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    """Session factory for work that outlives the request (background tasks)."""
    return async_session
