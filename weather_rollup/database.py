import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from weather_rollup.config import Settings, settings

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Lazily created engine and session factory shared by every job run.

    The pool lives from first use until ``dispose()`` at process shutdown.
    """

    def __init__(self, url: str, **engine_kwargs):
        self.url = url
        self.engine_kwargs = engine_kwargs
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def from_settings(cls, config: Settings) -> "Database":
        kwargs = {}
        if not config.is_sqlite:
            kwargs = {
                "pool_size": config.db_pool_size,
                "max_overflow": config.db_max_overflow,
                "pool_recycle": config.db_pool_recycle_seconds,
                "pool_pre_ping": True,
            }
        return cls(config.sqlalchemy_url, **kwargs)

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.url, echo=False, **self.engine_kwargs)
            logger.info(f"Database engine created ({self._engine.dialect.name})")
        return self._engine

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @property
    def sessionmaker(self) -> async_sessionmaker[AsyncSession]:
        if self._sessionmaker is None:
            self._sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)
        return self._sessionmaker

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.sessionmaker() as session:
            yield session

    async def create_tables(self):
        # Registers the mapped classes on Base.metadata
        from weather_rollup import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self):
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._sessionmaker = None


database = Database.from_settings(settings)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with database.session() as session:
        yield session
