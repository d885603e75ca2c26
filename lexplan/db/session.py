"""Async SQLAlchemy engine and unit-of-work sessions."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from lexplan.config import DatabaseSettings, EngineSettings, get_settings
from lexplan.db.base import Base
from lexplan.db.models import core as _models  # noqa: F401  registers tables
from lexplan.logging import logger


def engine_options(db_cfg: DatabaseSettings) -> dict[str, Any]:
    options: dict[str, Any] = {
        "echo": db_cfg.echo,
        "pool_recycle": db_cfg.pool_recycle,
        "pool_pre_ping": db_cfg.pool_pre_ping,
    }
    # SQLite uses a static/singleton pool without sizing knobs.
    if make_url(db_cfg.dsn).get_backend_name() != "sqlite":
        options["pool_size"] = db_cfg.pool_size
        options["max_overflow"] = db_cfg.max_overflow
    return options


class Database:
    """Lazily connects on first use and hands out one session per unit of work."""

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self.settings = settings or get_settings()
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    def _connect(self) -> None:
        if self._engine is None:
            db_cfg = self.settings.database
            self._engine = create_async_engine(db_cfg.dsn, **engine_options(db_cfg))
            # Writers flush explicitly before relying on locked rows.
            self._session_factory = async_sessionmaker(
                bind=self._engine,
                expire_on_commit=False,
                autoflush=False,
            )
            logger.info("db_engine_initialized", driver=make_url(db_cfg.dsn).drivername)

    @property
    def engine(self) -> AsyncEngine:
        self._connect()
        assert self._engine is not None
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        self._connect()
        assert self._session_factory is not None
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("db_tables_created", tables=sorted(Base.metadata.tables))

    async def dispose(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("db_engine_disposed")


__all__ = ["Database", "engine_options"]
