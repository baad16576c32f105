from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from reelsync.api import deps
from reelsync.core.jobs import get_job_backend
from reelsync.core.logging import get_logger
from reelsync.ingest.events import is_batch_envelope
from reelsync.services.dispatcher import respond

from . import schemas


router = APIRouter(prefix="/events", tags=["events"])
logger = get_logger(component="events_api")


@router.post("", summary="Process a batch of storage-change notifications")
async def receive_events(
    payload: schemas.StorageChangeBatch,
    dispatcher: deps.DispatcherDependency,
) -> JSONResponse:
    envelope = payload.model_dump(exclude_none=True)
    if not is_batch_envelope(envelope):
        return deps.to_response(respond(status.HTTP_400_BAD_REQUEST, {"error": "Invalid request"}))

    backend = get_job_backend()
    if backend is not None:
        job_id = backend.enqueue_envelope(envelope)
        logger.info("events_enqueued", job_id=job_id)
        accepted = schemas.EventAcceptedResponse(job_id=job_id)
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=accepted.model_dump())

    return deps.to_response(await dispatcher.process_batch(envelope))


__all__ = ["router"]
