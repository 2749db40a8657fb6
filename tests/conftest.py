from __future__ import annotations

from contextlib import asynccontextmanager

import pytest

from myrad.core.config import Settings


class FakeSession:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0
        self.savepoints = 0
        self.savepoint_rollbacks = 0

    async def __aenter__(self) -> FakeSession:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False

    @asynccontextmanager
    async def begin_nested(self):
        self.savepoints += 1
        try:
            yield self
        except Exception:
            self.savepoint_rollbacks += 1
            raise

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1


class FakeStore:
    """Stands in for ``Store``: hands out fake sessions and records them."""

    url = "postgresql+asyncpg://fake"

    def __init__(self) -> None:
        self.sessions: list[FakeSession] = []
        self.transactions = 0

    def session(self) -> FakeSession:
        session = FakeSession()
        self.sessions.append(session)
        return session

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        session = FakeSession()
        self.sessions.append(session)
        yield session

    async def dispose(self) -> None:
        return None


class DriverError(Exception):
    """Mimics an asyncpg error: carries a SQLSTATE and, for constraint errors, its name."""

    def __init__(self, sqlstate: str, *, constraint_name: str | None = None) -> None:
        super().__init__(f"driver error {sqlstate}")
        self.sqlstate = sqlstate
        self.constraint_name = constraint_name


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        STORE_RETRY_ATTEMPTS=3,
        STORE_RETRY_BACKOFF_MIN_MS=0,
        STORE_RETRY_BACKOFF_MAX_MS=0,
    )


@pytest.fixture
def driver_error() -> type[DriverError]:
    return DriverError
