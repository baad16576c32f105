from __future__ import annotations

import asyncio
from typing import Any, Optional

from reelsync.core.config import get_settings
from reelsync.core.db import DatabaseHandle
from reelsync.core.logging import configure_logging, get_logger, level_from_name
from reelsync.core.storage import get_storage
from reelsync.services.dispatcher import build_dispatcher

# A worker process runs many jobs; the loop and the database handle outlive
# each job so the connection pool is reused.
_loop: Optional[asyncio.AbstractEventLoop] = None
_database: Optional[DatabaseHandle] = None


def _worker_loop() -> asyncio.AbstractEventLoop:
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
    return _loop


def _worker_database() -> DatabaseHandle:
    global _database
    if _database is None:
        _database = DatabaseHandle(get_settings())
    return _database


def run_envelope(envelope: dict[str, Any]) -> dict[str, Any]:
    """Entry-point executed by the job backend for one storage-change batch."""

    settings = get_settings()
    configure_logging(level=level_from_name(settings.log_level))
    logger = get_logger(component="worker")
    storage = get_storage(settings)
    database = _worker_database()

    async def _runner() -> dict[str, Any]:
        if settings.database_auto_create and not database.initialised:
            await database.create_all()
        session_factory = await database.session_factory()
        dispatcher = build_dispatcher(settings, storage, session_factory)
        return await dispatcher.process_batch(envelope)

    result = _worker_loop().run_until_complete(_runner())
    logger.info("envelope_processed", status_code=result["statusCode"])
    return result


def shutdown() -> None:
    """Dispose of the shared database handle and close the worker loop."""
    global _loop, _database
    if _loop is None:
        return
    if _database is not None:
        _loop.run_until_complete(_database.dispose())
    _loop.close()
    _loop = None
    _database = None


__all__ = ["run_envelope", "shutdown"]
