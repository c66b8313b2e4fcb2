"""
Intent Engine - Database.

Async engine and session factory for the SQL intent store.

- URL from DatabaseConfig (DATABASE_URL)
- Pooling for server databases; SQLite (tests) uses the default pool
- create_all() for bootstrapping; migrations are managed outside
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import DatabaseConfig
from .exceptions import PersistenceError
from .models import Base


logger = logging.getLogger(__name__)


class Database:
    """Owns the async engine and session factory."""

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self._config = config or DatabaseConfig.from_env()
        if not self._config.url:
            raise PersistenceError("DATABASE_URL is not configured")
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def url(self) -> str:
        return self._config.url

    def get_engine(self) -> AsyncEngine:
        if self._engine is None:
            kwargs = {"echo": self._config.echo}
            if not self._config.url.startswith("sqlite"):
                kwargs.update(
                    pool_size=self._config.pool_size,
                    max_overflow=self._config.max_overflow,
                    pool_pre_ping=True,
                )
            self._engine = create_async_engine(self._config.url, **kwargs)
            logger.info(f"Database engine created for: {self._config.url.split('@')[-1]}")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.get_engine(), expire_on_commit=False,
            )
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            yield session

    async def create_all(self) -> None:
        async with self.get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Intent engine tables ensured")

    async def health_check(self) -> bool:
        try:
            async with self.get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
