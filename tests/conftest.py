"""Shared pytest fixtures for database-backed service tests."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lexplan.config import EngineSettings
from lexplan.db.base import Base
from lexplan.db.models import core  # noqa: F401
from lexplan.services.engine import BillingEngine

START = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)


class _AsyncSessionWrapper:
    def __init__(self, sync_session) -> None:
        self._sync = sync_session

    async def execute(self, *args, **kwargs):
        return self._sync.execute(*args, **kwargs)

    async def get(self, *args, **kwargs):
        return self._sync.get(*args, **kwargs)

    def add(self, obj) -> None:
        self._sync.add(obj)

    def add_all(self, objs) -> None:
        self._sync.add_all(objs)

    async def flush(self) -> None:
        self._sync.flush()

    async def commit(self) -> None:
        self._sync.commit()

    async def rollback(self) -> None:
        self._sync.rollback()

    async def close(self) -> None:
        self._sync.close()


class FakeDatabase:
    """Stands in for ``Database``, handing out one shared wrapped session."""

    def __init__(self, session) -> None:
        self._session = session
        self.sessions_opened = 0

    @asynccontextmanager
    async def session(self):
        self.sessions_opened += 1
        try:
            yield self._session
        except Exception:
            await self._session.rollback()
            raise

    async def dispose(self) -> None:
        pass


class FrozenClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest_asyncio.fixture
async def session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    sync_session = SessionLocal()
    try:
        yield _AsyncSessionWrapper(sync_session)
    finally:
        sync_session.close()
        engine.dispose()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(environment="dev")


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def database(session) -> FakeDatabase:
    return FakeDatabase(session)


@pytest.fixture
def billing_engine(database, settings, clock) -> BillingEngine:
    return BillingEngine(database, settings=settings, clock=clock)
