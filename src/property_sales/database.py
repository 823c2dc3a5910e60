"""Async database setup using SQLAlchemy 2.0."""

from typing import Any

from sqlalchemy import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from property_sales.config import Settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def create_engine(settings: Settings) -> AsyncEngine:
    """Build the async engine once at process start.

    Pool sizing and timeouts only apply to server databases; SQLite picks its
    own pool class.
    """
    url = make_url(settings.database_url)
    kwargs: dict[str, Any] = {"echo": settings.debug}

    if url.get_backend_name() != "sqlite":
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
            pool_pre_ping=True,
        )
    if url.get_driver_name() == "asyncpg":
        kwargs["connect_args"] = {
            "timeout": settings.db_pool_timeout,
            "server_settings": {
                "statement_timeout": str(int(settings.checkpoint_timeout_seconds * 1000)),
            },
        }

    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database tables."""
    # Import models so their tables are registered on Base.metadata
    from property_sales import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections."""
    await engine.dispose()
