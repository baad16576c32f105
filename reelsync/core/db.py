from __future__ import annotations

import asyncio

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import Settings


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""


def create_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(settings.database_url, echo=False, future=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class DatabaseHandle:
    """Lazily created engine and session factory shared by a long-lived worker.

    The first caller builds the engine; concurrent first callers wait on the
    same lock so only one engine is ever created per handle.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._lock = asyncio.Lock()

    @property
    def initialised(self) -> bool:
        return self._session_factory is not None

    async def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is not None:
            return self._session_factory
        async with self._lock:
            if self._session_factory is None:
                self._engine = create_engine(self.settings)
                self._session_factory = create_session_factory(self._engine)
        return self._session_factory

    async def create_all(self) -> None:
        await self.session_factory()
        assert self._engine is not None
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        async with self._lock:
            if self._engine is not None:
                await self._engine.dispose()
            self._engine = None
            self._session_factory = None


__all__ = ["Base", "DatabaseHandle", "create_engine", "create_session_factory"]
