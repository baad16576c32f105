from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path
from typing import Callable

from reelsync.core.config import Settings
from reelsync.core.deadline import Deadline
from reelsync.core.logging import get_logger
from reelsync.core.storage import Storage
from reelsync.ingest.events import StorageChangeRecord
from reelsync.ingest.thumbnails import extract_frame, thumbnail_key

FrameExtractor = Callable[..., tuple[int, int]]


class ThumbnailGenerator:
    """Best-effort preview frame for a newly created video.

    ``generate`` never raises: any failure is logged and reported as ``None``.
    """

    def __init__(self, settings: Settings, storage: Storage, *, frame_extractor: FrameExtractor = extract_frame):
        self.settings = settings
        self.storage = storage
        self.frame_extractor = frame_extractor
        self.logger = get_logger(component="thumbnail_generator")

    async def generate(self, record: StorageChangeRecord, deadline: Deadline) -> str | None:
        if not self.settings.thumbnails_enabled:
            return None
        logger = self.logger.bind(bucket=record.bucket, key=record.key)
        try:
            reference = await self._generate(record, deadline)
        except Exception as exc:  # best-effort: a missing thumbnail never fails the record
            logger.warning("thumbnail_failed", error=str(exc), error_type=type(exc).__name__)
            return None
        logger.info("thumbnail_generated", thumbnail_url=reference)
        return reference

    async def _generate(self, record: StorageChangeRecord, deadline: Deadline) -> str:
        settings = self.settings
        presigned = await deadline.run(
            asyncio.to_thread(
                self.storage.presign_get,
                record.key,
                bucket=record.bucket,
                expires_s=settings.presign_expiry_s,
            )
        )
        target_key = thumbnail_key(record.key, prefix=settings.thumbnail_prefix)

        with tempfile.TemporaryDirectory(prefix="reelsync-thumb-") as workdir:
            output_path = Path(workdir) / Path(target_key).name
            await deadline.run(
                asyncio.to_thread(
                    self.frame_extractor,
                    presigned.url,
                    output_path,
                    offset_s=settings.thumbnail_offset_s,
                    width=settings.thumbnail_width,
                    height=settings.thumbnail_height,
                    timeout_s=deadline.bound(settings.thumbnail_timeout_s),
                )
            )
            payload = output_path.read_bytes()

        await deadline.run(
            asyncio.to_thread(
                self.storage.write_bytes,
                target_key,
                payload,
                content_type="image/jpeg",
                bucket=record.bucket,
            )
        )

        if settings.thumbnail_signed_urls:
            signed = await asyncio.to_thread(
                self.storage.presign_get,
                target_key,
                bucket=record.bucket,
                expires_s=settings.presign_expiry_s,
            )
            return signed.url
        return self.storage.public_url(target_key, bucket=record.bucket)


__all__ = ["ThumbnailGenerator"]
