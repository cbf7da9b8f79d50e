"""
Database Connection and Session Management

Provides the async SQLAlchemy 2.0 engine and session factory wrapped in an
explicitly constructed Database object with startup/teardown hooks.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config import settings
from app.models.database import Base

logger = logging.getLogger(__name__)


class Database:
    """
    Owns one async engine and its session factory.

    Usage:
        db = Database(settings.database_url)
        async with db.session() as session:
            result = await session.execute(select(Appointment))
        await db.close()
    """

    def __init__(
        self,
        url: Optional[str] = None,
        echo: Optional[bool] = None,
        **engine_kwargs: Any,
    ):
        """Create the engine.

        Args:
            url: Database URL (defaults to settings)
            echo: Log SQL statements (defaults to settings.debug)
            **engine_kwargs: Extra create_async_engine arguments; NullPool is
                used unless a poolclass is given
        """
        engine_kwargs.setdefault("poolclass", NullPool)
        self.url = url or settings.database_url
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            echo=settings.debug if echo is None else echo,
            **engine_kwargs,
        )
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def dialect_name(self) -> str:
        """Name of the SQL dialect ("postgresql", "sqlite", ...)."""
        return self.engine.dialect.name

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session scope with commit on success and rollback on exception.

        Usage:
            async with db.session() as session:
                session.add(row)

        Yields:
            AsyncSession: Database session
        """
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def create_all(self) -> None:
        """
        Create all database tables.

        Used by scripts/migrate.py and in development startup.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of all pooled connections."""
        await self.engine.dispose()

    async def check_health(self) -> bool:
        """
        Check database connectivity for health checks.

        Returns:
            bool: True if database is accessible, False otherwise
        """
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False
