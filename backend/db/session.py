"""Async engine and session factory setup."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.config import get_settings

_session_factory: Optional[async_sessionmaker] = None


def create_db_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """Create and configure the async SQLAlchemy engine.

    SQLite URLs get a StaticPool for in-memory databases so every session
    sees the same connection; other backends get a sized connection pool.
    """
    settings = get_settings()
    url = database_url or settings.DATABASE_URL
    kwargs = dict(echo=settings.SQLALCHEMY_ECHO if echo is None else echo)

    if url.startswith("sqlite"):
        if ":memory:" in url:
            kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        kwargs.update(
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create the async session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker:
    """Process-wide session factory on the engine from ``DATABASE_URL``.

    Built on first use and cached; hosts that manage their own engine use
    :func:`create_session_factory` instead.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(create_db_engine())
    return _session_factory


async def init_db(engine: AsyncEngine) -> None:
    """Create all engine tables on ``engine``."""
    from db.base import Base
    import db.models  # noqa: F401  registers models

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(engine: AsyncEngine) -> None:
    """Drop all engine tables on ``engine``."""
    from db.base import Base
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
