from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from reelsync.api.v1 import get_api_router
from reelsync.core.compute import InstanceController
from reelsync.core.config import get_settings
from reelsync.core.db import DatabaseHandle
from reelsync.core.logging import configure_logging, get_logger, level_from_name
from reelsync.core.storage import Storage, get_storage
from reelsync.services.dispatcher import build_dispatcher

logger = get_logger(component="app")


def create_app(
    *,
    storage: Optional[Storage] = None,
    controller: Optional[InstanceController] = None,
) -> FastAPI:
    settings = get_settings()
    configure_logging(level=level_from_name(settings.log_level))
    storage = storage or get_storage(settings)
    database = DatabaseHandle(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.database_auto_create:
            await database.create_all()
        session_factory = await database.session_factory()
        app.state.settings = settings
        app.state.storage = storage
        app.state.database = database
        app.state.dispatcher = build_dispatcher(settings, storage, session_factory, controller=controller)
        logger.info(
            "app_started",
            environment=settings.environment_lower,
            storage_backend=settings.storage_backend,
            sync_enabled=settings.sync_enabled,
        )
        try:
            yield
        finally:
            await database.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )

    app.include_router(get_api_router())
    return app


app = create_app()


__all__ = ["app", "create_app"]
