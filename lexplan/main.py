"""Application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from lexplan.api import setup_routers
from lexplan.api.errors import register_error_handlers
from lexplan.config import EngineSettings, get_settings
from lexplan.db.session import Database
from lexplan.logging import configure_logging, logger
from lexplan.services.engine import BillingEngine


def create_app(
    settings: EngineSettings | None = None,
    database: Database | None = None,
    engine: BillingEngine | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    database = database or Database(settings=settings)
    engine = engine or BillingEngine(database, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.database.create_tables:
            await database.create_all()
        logger.info("api_starting", environment=settings.environment)
        yield
        await database.dispose()
        logger.info("api_stopped")

    app = FastAPI(
        title="lexplan",
        description="Subscription lifecycle and proration engine",
        docs_url="/docs" if settings.api.docs else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.engine = engine
    app.include_router(setup_routers())
    register_error_handlers(app)
    return app


def main() -> None:
    settings = get_settings()
    configure_logging(json=settings.environment != "dev")
    app = create_app(settings)
    uvicorn.run(app, host=settings.api.host, port=settings.api.port, log_config=None)


if __name__ == "__main__":
    main()
