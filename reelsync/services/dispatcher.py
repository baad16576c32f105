from __future__ import annotations

import asyncio
import json
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelsync.core.auth import ANONYMOUS
from reelsync.core.compute import InstanceController, get_instance_controller
from reelsync.core.config import Settings
from reelsync.core.deadline import Deadline
from reelsync.core.logging import get_logger
from reelsync.core.storage import Storage
from reelsync.db.models import SyncEventKind
from reelsync.errors import (
    InvalidRequestError,
    ObjectHeadError,
    PartialDeletionError,
    StorageDeletionError,
    SyncError,
)
from reelsync.ingest.events import (
    DirectRequest,
    StorageChangeRecord,
    decode_path_segment,
    is_batch_envelope,
    is_direct_envelope,
    matches_ingest_filter,
    parse_batch,
    parse_direct_request,
)

from .extractor import MetadataExtractor
from .metadata_store import MetadataStore, SyncRunLog
from .query_service import QueryFacade
from .syncer import DistributionSyncer
from .thumbnail_service import ThumbnailGenerator

RESPONSE_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Content-Type": "application/json",
}

BATCH_OK_MESSAGE = "Processed S3 events successfully"


def respond(status_code: int, body: Any) -> dict[str, Any]:
    return {"statusCode": status_code, "headers": dict(RESPONSE_HEADERS), "body": body}


class EventDispatcher:
    """Routes an envelope to the ingest pipeline or the query facade."""

    def __init__(
        self,
        settings: Settings,
        *,
        store: MetadataStore,
        extractor: MetadataExtractor,
        thumbnails: ThumbnailGenerator,
        query: QueryFacade,
        syncer: DistributionSyncer | None = None,
    ):
        self.settings = settings
        self.store = store
        self.extractor = extractor
        self.thumbnails = thumbnails
        self.query = query
        self.syncer = syncer
        self.logger = get_logger(component="event_dispatcher")

    async def dispatch(
        self,
        envelope: Any,
        *,
        owner: str = ANONYMOUS,
        deadline: Deadline | None = None,
    ) -> dict[str, Any]:
        if is_batch_envelope(envelope):
            return await self.process_batch(envelope, deadline=deadline)
        if is_direct_envelope(envelope):
            return await self.handle_request(envelope, owner=owner)
        self.logger.info("envelope_rejected")
        return respond(400, {"error": "Invalid request"})

    # Storage-change batches

    async def process_batch(self, envelope: dict[str, Any], *, deadline: Deadline | None = None) -> dict[str, Any]:
        deadline = deadline or Deadline.after(self.settings.invocation_timeout_s)
        parsed = parse_batch(envelope)
        selected = [item for item in parsed if isinstance(item, InvalidRequestError) or self.accepts(item)]
        self.logger.info("batch_received", records=len(parsed), selected=len(selected))

        results = await asyncio.gather(*(self._settle(item, deadline) for item in selected))

        failures = sum(1 for result in results if result["outcome"] == "failed")
        if failures:
            message = f"Processed S3 events with {failures} failure(s)"
            return respond(207, {"message": message, "results": results})
        return respond(200, {"message": BATCH_OK_MESSAGE, "results": results})

    def accepts(self, record: StorageChangeRecord) -> bool:
        return matches_ingest_filter(
            record.key,
            prefix=self.settings.normalized_video_prefix,
            extension=self.settings.video_extension,
        )

    async def _settle(self, item: StorageChangeRecord | InvalidRequestError, deadline: Deadline) -> dict[str, Any]:
        if isinstance(item, InvalidRequestError):
            return {"key": None, "outcome": "failed", "error": str(item)}
        try:
            if item.kind == "created":
                return await self._handle_created(item, deadline)
            return await self._handle_removed(item, deadline)
        except ObjectHeadError as exc:
            return {"key": item.key, "outcome": "failed", "error": str(exc)}
        except Exception as exc:
            self.logger.exception("record_failed", key=item.key, bucket=item.bucket)
            return {"key": item.key, "outcome": "failed", "error": f"{type(exc).__name__}: {exc}"}

    async def _handle_created(self, record: StorageChangeRecord, deadline: Deadline) -> dict[str, Any]:
        extraction = await self.extractor.extract_created(record, deadline)
        asset = extraction.asset

        thumbnail_url = await self.thumbnails.generate(record, deadline)
        if thumbnail_url:
            asset = await self.store.update_fields(record.key, {"thumbnail_url": thumbnail_url}) or asset

        sync_error: str | None = None
        if self.syncer is not None:
            try:
                synced = await self.syncer.sync(SyncEventKind.created, record, deadline)
            except SyncError as exc:
                sync_error = str(exc)
            else:
                if synced.streaming_url:
                    asset = await self.store.update_fields(record.key, {"streaming_url": synced.streaming_url}) or asset

        outcome = {**asset.to_document(), "outcome": "created"}
        if extraction.probe_error:
            outcome["probeError"] = extraction.probe_error
        if sync_error:
            outcome["syncError"] = sync_error
        return outcome

    async def _handle_removed(self, record: StorageChangeRecord, deadline: Deadline) -> dict[str, Any]:
        deleted = await self.extractor.extract_removed(record)
        outcome: dict[str, Any] = {"key": record.key, "outcome": "removed", "recordDeleted": deleted}
        if self.syncer is not None:
            try:
                await self.syncer.sync(SyncEventKind.removed, record, deadline)
            except SyncError as exc:
                outcome["syncError"] = str(exc)
        return outcome

    # Direct requests

    async def handle_request(self, envelope: dict[str, Any], *, owner: str = ANONYMOUS) -> dict[str, Any]:
        try:
            request = parse_direct_request(envelope)
        except InvalidRequestError as exc:
            return respond(400, {"error": "Invalid request", "detail": str(exc)})

        known_path, identifier = self._resolve_target(request)
        if not known_path:
            return respond(400, {"error": "Invalid request", "detail": f"unsupported path {request.path}"})

        if request.method == "GET":
            if identifier:
                document = await self.query.get(identifier)
                if document is None:
                    return respond(404, {"error": "Video not found"})
                return respond(200, document)
            return respond(200, await self.query.list())

        if request.method == "DELETE":
            if not identifier:
                return respond(400, {"error": "Invalid request", "detail": "video identifier required"})
            return await self._remove(identifier)

        if request.method == "POST" and not identifier:
            return await self._upload_slot(request, owner=owner)

        return respond(405, {"error": "Method not allowed"})

    def _resolve_target(self, request: DirectRequest) -> tuple[bool, str | None]:
        collection = "/" + self.settings.collection_path.strip("/")
        path = "/" + request.path.strip("/") if request.path.strip("/") else collection
        if path == collection:
            return True, request.path_identifier
        if path.startswith(collection + "/"):
            return True, request.path_identifier or decode_path_segment(path[len(collection) + 1 :])
        return False, None

    async def _remove(self, key: str) -> dict[str, Any]:
        try:
            outcome = await self.query.remove(key)
        except StorageDeletionError as exc:
            return respond(502, {"error": "Storage deletion failed", "detail": str(exc), "key": key})
        except PartialDeletionError as exc:
            return respond(
                500,
                {"error": "Partial deletion", "detail": str(exc), "key": key, "partial": True},
            )
        return respond(200, {"message": "Video deleted", "key": key, "recordDeleted": outcome.record_deleted})

    async def _upload_slot(self, request: DirectRequest, *, owner: str) -> dict[str, Any]:
        body = request.body
        if isinstance(body, str):
            try:
                body = json.loads(body or "{}")
            except json.JSONDecodeError:
                return respond(400, {"error": "Invalid request", "detail": "body is not valid JSON"})
        if not isinstance(body, dict):
            return respond(400, {"error": "Invalid request", "detail": "body must be an object"})
        try:
            slot = await self.query.create_upload_slot(
                owner=owner,
                file_name=body.get("fileName"),
                content_type=body.get("contentType"),
            )
        except InvalidRequestError as exc:
            return respond(400, {"error": "Invalid request", "detail": str(exc)})
        return respond(200, slot)


def build_dispatcher(
    settings: Settings,
    storage: Storage,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    controller: InstanceController | None = None,
) -> EventDispatcher:
    store = MetadataStore(session_factory)
    syncer = None
    if settings.sync_enabled:
        syncer = DistributionSyncer(
            settings,
            controller or get_instance_controller(settings),
            run_log=SyncRunLog(session_factory),
        )
    return EventDispatcher(
        settings,
        store=store,
        extractor=MetadataExtractor(settings, storage, store),
        thumbnails=ThumbnailGenerator(settings, storage),
        query=QueryFacade(settings, storage, store),
        syncer=syncer,
    )


__all__ = ["EventDispatcher", "RESPONSE_HEADERS", "build_dispatcher", "respond"]
