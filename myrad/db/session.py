from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from myrad.core.config import Settings


class Store:
    """Owned handle to the relational store: one engine plus its session factory.

    Created by a process entry point (API lifespan, worker job, test fixture)
    and passed explicitly to every service; ``dispose()`` closes the pool.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_factory = async_sessionmaker(engine, expire_on_commit=False)

    @property
    def url(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)

    def session(self) -> AsyncSession:
        return self.session_factory()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory.begin() as session:
            yield session

    async def dispose(self) -> None:
        await self.engine.dispose()


def build_engine(settings: Settings, *, database_url: str | None = None) -> AsyncEngine:
    statement_timeout_ms = int(settings.db_statement_timeout_seconds * 1000)
    return create_async_engine(
        database_url or settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout_seconds,
        pool_recycle=settings.db_pool_recycle_seconds,
        pool_pre_ping=True,
        connect_args={
            "command_timeout": settings.db_statement_timeout_seconds,
            "server_settings": {"statement_timeout": str(statement_timeout_ms)},
        },
    )


def create_store(settings: Settings, *, database_url: str | None = None) -> Store:
    return Store(build_engine(settings, database_url=database_url))
