"""Database engine, session factory, and declarative base.

A single DeclarativeBase holds the reference tables (clients, produce),
the committed receiving tables and the in-progress draft table.

Session dependency for FastAPI:
  - get_db()  → request-scoped session, committed on success
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from freshintake.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# ── Base class ──────────────────────────────────────────────

class Base(DeclarativeBase):
    pass


# ── Session dependencies ────────────────────────────────────

async def get_db() -> AsyncSession:
    """Yield a session that commits when the request succeeds."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    """Session factory used by the record store.

    The commit protocol opens its own short-lived sessions (one per
    attempt) so a failed attempt never poisons the request session.
    """
    return async_session
