"""
Async engine, session factory and declarative base for the run store.
Production runs on asyncpg; tests hand a SQLite URL to `build_engine`.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from sitescope.core.config import get_settings

settings = get_settings()


def build_engine(url: str | None = None) -> AsyncEngine:
    url = url or settings.postgres_url
    if url.startswith("sqlite"):
        # SQLite has no server-side pool to size
        return create_async_engine(url, echo=settings.POSTGRES_ECHO)
    return create_async_engine(
        url,
        pool_size=settings.POSTGRES_POOL_SIZE,
        max_overflow=settings.POSTGRES_MAX_OVERFLOW,
        pool_timeout=settings.POSTGRES_POOL_TIMEOUT,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=settings.POSTGRES_ECHO,
    )


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine = build_engine()
AsyncSessionLocal = make_sessionmaker(engine)


class Base(DeclarativeBase):
    pass


async def ping_database() -> None:
    """Raises when the database is unreachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
