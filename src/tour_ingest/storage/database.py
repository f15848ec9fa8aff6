"""Database connection and session management (async SQLAlchemy).

The engine is owned by a `Database` instance created at startup and disposed
at shutdown; repositories only ever receive its session factory.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..models.database import Base


class Database:
    def __init__(self, url: str, *, echo: bool = False):
        self._engine = create_async_engine(url, echo=echo, future=True)
        self._sessionmaker = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    def session_factory(self) -> AsyncSession:
        """Create a new AsyncSession (caller must close)."""
        return self._sessionmaker()

    async def init(self) -> None:
        """Create tables that do not exist yet."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()
