"""
Database engine configuration and management.
Uses the SQLAlchemy async engine; SQLite through aiosqlite by default.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from smartfetch.datastore.models import Base


class Database:
    """
    Owns one async engine and its session factory.

    Tables are created lazily on first use, so constructing a Database never
    touches the disk.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._init_lock = asyncio.Lock()

    async def init(self) -> None:
        """Create the engine and all tables. Safe to call repeatedly."""
        if self._engine is not None:
            return

        async with self._init_lock:
            if self._engine is not None:
                return

            engine = create_async_engine(self.url, echo=self._echo, future=True)
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            self._session_factory = async_sessionmaker(
                bind=engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
            self._engine = engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Transactional session: commit on success, rollback on error."""
        await self.init()
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connections."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
