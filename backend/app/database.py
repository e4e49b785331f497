"""Database engine, session factory, and declarative base.

One DeclarativeBase for every billing table (clients, projects, invoices,
ledger rows, activity log).  The session dependency commits on success
and rolls back on any exception, so service functions only ever flush.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings
from app.utils.cache import discard_pending_invalidations, run_pending_invalidations

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    """Base class for all billing models."""
    pass


async def get_db() -> AsyncSession:
    """Yield a session; commit when the request handler succeeds.

    Cache invalidations queued by event handlers run only after the commit.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_pending_invalidations(session)
            raise
        await run_pending_invalidations(session)
