"""Tests for the lazy database wrapper."""

from __future__ import annotations

import pytest

from lexplan.config import DatabaseSettings, EngineSettings
from lexplan.db.base import Base
from lexplan.db.session import Database, engine_options


def test_engine_options_skip_pool_sizing_for_sqlite():
    mysql = engine_options(DatabaseSettings(pool_size=7, max_overflow=3))
    sqlite = engine_options(DatabaseSettings(dsn="sqlite+aiosqlite:///:memory:"))

    assert mysql["pool_size"] == 7
    assert mysql["max_overflow"] == 3
    assert "pool_size" not in sqlite
    assert "max_overflow" not in sqlite


def test_tables_are_registered():
    assert {"subscriptions", "usage_records", "processed_payments", "subscription_events"} <= set(
        Base.metadata.tables
    )


@pytest.mark.asyncio
async def test_engine_is_created_lazily_and_disposed():
    database = Database(EngineSettings(_env_file=None))
    assert database._engine is None

    engine = database.engine
    assert database.engine is engine
    assert engine.dialect.name == "mysql"
    assert database.session_factory.kw["autoflush"] is False

    await database.dispose()
    assert database._engine is None
    await database.dispose()
