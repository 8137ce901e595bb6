"""Database lifecycle.

A `Database` is constructed explicitly (in the FastAPI lifespan, or by tests)
and handed to whoever needs sessions. Nothing here caches a connection in
module state.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Request
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shipdocs.errors import StoreUnavailable
from shipdocs.models.base import Base

logger = logging.getLogger("shipdocs.database")


class Database:
    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise StoreUnavailable("Database is not connected")
        return self._engine

    async def connect(self) -> None:
        if self._engine is not None:
            return
        logger.info("Connecting to database")
        self._engine = create_async_engine(self.url, echo=self.echo, pool_pre_ping=True)
        self._sessionmaker = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create tables directly from metadata (tests and local dev only)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Database connection closed")
        self._engine = None
        self._sessionmaker = None

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        if self._sessionmaker is None:
            raise StoreUnavailable("Database is not connected")
        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except OperationalError as e:
                await session.rollback()
                logger.error("Database unavailable: %s", e)
                raise StoreUnavailable("Database is unreachable", details={"reason": str(e)}) from e
            except Exception:
                await session.rollback()
                raise


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session
