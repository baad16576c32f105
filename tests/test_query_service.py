from __future__ import annotations

from datetime import datetime, timezone

import pytest

from reelsync.core.config import get_settings
from reelsync.db.models import VideoStatus
from reelsync.errors import PartialDeletionError, StorageDeletionError
from reelsync.services.dispatcher import EventDispatcher
from reelsync.services.extractor import MetadataExtractor
from reelsync.services.metadata_store import MetadataStore
from reelsync.services.query_service import QueryFacade
from reelsync.services.thumbnail_service import ThumbnailGenerator

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


async def _seed(store: MetadataStore, key: str = "videos/clip.mp4", bucket: str = "archive") -> None:
    await store.upsert(
        key,
        {"bucket": bucket, "filename": key.rsplit("/", 1)[-1], "status": VideoStatus.ready},
        on_insert={"upload_date": T0},
    )


def test_remove_uses_recorded_bucket(run_with_database, fake_storage):
    fake_storage.add("videos/clip.mp4", bucket="archive")

    async def scenario(session_factory):
        store = MetadataStore(session_factory)
        await _seed(store)
        outcome = await QueryFacade(get_settings(), fake_storage, store).remove("videos/clip.mp4")
        return outcome, await store.count()

    outcome, count = run_with_database(scenario)
    assert outcome.record_deleted is True
    assert count == 0
    assert fake_storage.deleted == [("archive", "videos/clip.mp4")]


def test_storage_failure_leaves_record(run_with_database, fake_storage):
    fake_storage.fail_delete = True

    async def scenario(session_factory):
        store = MetadataStore(session_factory)
        await _seed(store)
        with pytest.raises(StorageDeletionError):
            await QueryFacade(get_settings(), fake_storage, store).remove("videos/clip.mp4")
        return await store.count()

    assert run_with_database(scenario) == 1


def test_record_failure_after_storage_delete_is_partial(run_with_database, fake_storage):
    async def scenario(session_factory):
        store = MetadataStore(session_factory)
        await _seed(store)

        async def refuse(key):
            raise RuntimeError("database is locked")

        store.delete_by_key = refuse
        with pytest.raises(PartialDeletionError) as excinfo:
            await QueryFacade(get_settings(), fake_storage, store).remove("videos/clip.mp4")
        return excinfo.value

    error = run_with_database(scenario)
    assert error.key == "videos/clip.mp4"
    assert "database is locked" in str(error)
    assert fake_storage.deleted == [("archive", "videos/clip.mp4")]


def test_delete_responses_distinguish_failures(run_with_database, fake_storage):
    async def scenario(session_factory):
        settings = get_settings()
        store = MetadataStore(session_factory)
        await _seed(store)
        dispatcher = EventDispatcher(
            settings,
            store=store,
            extractor=MetadataExtractor(settings, fake_storage, store),
            thumbnails=ThumbnailGenerator(settings, fake_storage),
            query=QueryFacade(settings, fake_storage, store),
        )
        request = {"method": "DELETE", "path": "/videos", "pathIdentifier": "videos/clip.mp4"}

        fake_storage.fail_delete = True
        storage_failed = await dispatcher.dispatch(request)

        fake_storage.fail_delete = False

        async def refuse(key):
            raise RuntimeError("connection reset")

        original = store.delete_by_key
        store.delete_by_key = refuse
        partial = await dispatcher.dispatch(request)

        store.delete_by_key = original
        ok = await dispatcher.dispatch(request)
        return storage_failed, partial, ok

    storage_failed, partial, ok = run_with_database(scenario)
    assert storage_failed["statusCode"] == 502
    assert partial["statusCode"] == 500
    assert partial["body"]["partial"] is True
    assert partial["body"]["error"] == "Partial deletion"
    assert ok["statusCode"] == 200
    assert ok["body"]["recordDeleted"] is True
