"""
Database connection management.

A ``Database`` is constructed once at process startup, passed to whatever
needs it, and closed on shutdown.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from eventpipe.config import Settings, get_settings

logger = logging.getLogger(__name__)


class Database:
    """
    Owns the async engine and session factory for one process.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._sessionmaker = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Database":
        """
        Create the engine from application settings.

        Args:
            settings: Settings to use. Defaults to the cached settings.

        Returns:
            Database: A ready-to-use database handle.
        """
        settings = settings or get_settings()
        engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
        logger.info("Database connection initialized")
        return cls(engine)

    @classmethod
    def for_tests(cls, database_url: str) -> "Database":
        """Create a database handle with NullPool for tests."""
        return cls(create_async_engine(database_url, poolclass=NullPool, echo=False))

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """
        Context manager for a session that commits on success.

        Yields:
            AsyncSession: An async database session.
        """
        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Dispose of the engine's connection pool."""
        await self.engine.dispose()
        logger.info("Database connection closed")
