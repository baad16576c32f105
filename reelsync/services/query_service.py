from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from reelsync.core.config import Settings
from reelsync.core.logging import get_logger
from reelsync.core.storage import Storage, StorageError
from reelsync.db.models import LISTABLE_STATUSES
from reelsync.errors import InvalidRequestError, PartialDeletionError, StorageDeletionError

from .metadata_store import MetadataStore


@dataclass(frozen=True, slots=True)
class RemovalOutcome:
    key: str
    record_deleted: bool


class QueryFacade:
    """Read access and removal over the catalog."""

    def __init__(self, settings: Settings, storage: Storage, store: MetadataStore):
        self.settings = settings
        self.storage = storage
        self.store = store
        self.logger = get_logger(component="query_facade")

    async def list(self) -> list[dict[str, Any]]:
        assets = await self.store.find_by_status_ordered_by_recency(LISTABLE_STATUSES)
        return [asset.to_document() for asset in assets]

    async def get(self, key: str) -> dict[str, Any] | None:
        asset = await self.store.find_by_id(key)
        return asset.to_document() if asset else None

    async def remove(self, key: str, *, bucket: str | None = None) -> RemovalOutcome:
        """Delete the storage object, then the metadata record.

        The two deletes are not atomic. If the second one fails the object is
        already gone and ``PartialDeletionError`` is raised so callers can
        tell the inconsistency apart from a clean failure.
        """
        logger = self.logger.bind(key=key)
        if bucket is None:
            existing = await self.store.find_by_id(key)
            bucket = existing.bucket if existing else None
        try:
            await asyncio.to_thread(self.storage.delete, key, bucket=bucket)
        except (*StorageError, ValueError) as exc:
            logger.warning("storage_delete_failed", error=str(exc))
            raise StorageDeletionError(f"could not delete storage object {key}: {exc}") from exc

        try:
            deleted = await self.store.delete_by_key(key)
        except Exception as exc:
            logger.error("partial_deletion", error=str(exc))
            raise PartialDeletionError(key, exc) from exc

        logger.info("video_removed", record_deleted=deleted)
        return RemovalOutcome(key=key, record_deleted=deleted)

    async def create_upload_slot(self, *, owner: str, file_name: Any, content_type: Any = None) -> dict[str, Any]:
        """Issue a presigned PUT URL for a new upload under the ingest prefix."""
        if not isinstance(file_name, str) or not file_name.strip():
            raise InvalidRequestError("fileName is required")
        name = PurePosixPath(file_name.strip()).name
        if not name.lower().endswith(self.settings.video_extension.lower()):
            raise InvalidRequestError(f"fileName must end with {self.settings.video_extension}")
        if content_type is not None and not isinstance(content_type, str):
            raise InvalidRequestError("contentType must be a string")

        key = f"{self.settings.normalized_video_prefix}{owner}/{int(time.time() * 1000)}-{name}"
        presigned = await asyncio.to_thread(
            self.storage.presign_put,
            key,
            content_type=content_type or "video/mp4",
            expires_s=self.settings.presign_expiry_s,
        )
        self.logger.info("upload_slot_issued", key=key, owner=owner)
        return {"uploadUrl": presigned.url, "key": key, "headers": presigned.headers or {}}


__all__ = ["QueryFacade", "RemovalOutcome"]
