from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from reelsync.core.config import Settings
from reelsync.core.deadline import Deadline
from reelsync.core.logging import get_logger
from reelsync.core.storage import ObjectHead, Storage, StorageError
from reelsync.db.models import VideoAsset, VideoStatus
from reelsync.errors import DeadlineExceeded, ObjectHeadError
from reelsync.ingest.events import StorageChangeRecord
from reelsync.ingest.ffprobe import probe_duration

from .metadata_store import MetadataStore

DurationProbe = Callable[..., float]


@dataclass(slots=True)
class ExtractionResult:
    asset: VideoAsset
    head: ObjectHead
    probe_error: str | None = None


class MetadataExtractor:
    """Turns a storage-change record into a persisted VideoAsset."""

    def __init__(
        self,
        settings: Settings,
        storage: Storage,
        store: MetadataStore,
        *,
        probe: DurationProbe = probe_duration,
    ):
        self.settings = settings
        self.storage = storage
        self.store = store
        self.probe = probe
        self.logger = get_logger(component="metadata_extractor")

    async def extract_created(self, record: StorageChangeRecord, deadline: Deadline) -> ExtractionResult:
        logger = self.logger.bind(bucket=record.bucket, key=record.key)

        try:
            head = await deadline.run(asyncio.to_thread(self.storage.head, record.key, bucket=record.bucket))
        except (*StorageError, ValueError, DeadlineExceeded) as exc:
            logger.warning("object_head_failed", error=str(exc))
            raise ObjectHeadError(f"head failed for {record.key}: {exc}") from exc

        base_fields = {
            "bucket": record.bucket,
            "filename": record.filename,
            "size_bytes": head.size_bytes,
            "content_type": head.content_type,
            "last_modified": head.last_modified,
        }
        on_insert = {"upload_date": datetime.now(timezone.utc), "status": VideoStatus.processing}
        base = await self.store.upsert(record.key, base_fields, on_insert=on_insert)

        duration: float | None = None
        probe_error: str | None = None
        try:
            duration = await self._probe(record, deadline)
        except Exception as exc:  # best-effort: a probe failure never drops the record
            probe_error = str(exc)
            logger.warning("duration_probe_failed", error=probe_error)

        fields: dict[str, object] = dict(base_fields)
        if duration is not None:
            fields["duration_s"] = duration
            # An asset already served by the distribution host keeps its status.
            if base.status != VideoStatus.active:
                fields["status"] = VideoStatus.ready
        # A redelivered record that already reached ready/active keeps its probe results.
        elif base.status in (VideoStatus.processing, VideoStatus.error):
            fields["duration_s"] = None
            fields["status"] = VideoStatus.error
        asset = await self.store.upsert(record.key, fields, on_insert=on_insert)
        logger.info("asset_extracted", status=asset.status.value, duration_s=duration)
        return ExtractionResult(asset=asset, head=head, probe_error=probe_error)

    async def extract_removed(self, record: StorageChangeRecord) -> bool:
        deleted = await self.store.delete_by_key(record.key)
        self.logger.info("asset_removed", key=record.key, record_deleted=deleted)
        return deleted

    async def _probe(self, record: StorageChangeRecord, deadline: Deadline) -> float:
        presigned = await deadline.run(
            asyncio.to_thread(
                self.storage.presign_get,
                record.key,
                bucket=record.bucket,
                expires_s=self.settings.presign_expiry_s,
            )
        )
        timeout_s = deadline.bound(self.settings.probe_timeout_s)
        if timeout_s <= 0:
            raise DeadlineExceeded("invocation deadline elapsed before probe")
        return await asyncio.to_thread(self.probe, presigned.url, timeout_s=timeout_s)


__all__ = ["MetadataExtractor", "ExtractionResult"]
