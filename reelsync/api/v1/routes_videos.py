from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from reelsync.api import deps
from reelsync.core.config import Settings

from . import schemas


router = APIRouter(prefix="/videos", tags=["videos"])


def _direct_request(
    settings: Settings,
    method: str,
    *,
    key: Optional[str] = None,
    body: Any = None,
) -> dict[str, Any]:
    envelope: dict[str, Any] = {"method": method, "path": settings.collection_path}
    if key is not None:
        envelope["pathIdentifier"] = key
    if body is not None:
        envelope["body"] = body
    return envelope


@router.get("", summary="List ready videos, newest first")
async def list_videos(
    dispatcher: deps.DispatcherDependency,
    context: deps.AuthDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> JSONResponse:
    result = await dispatcher.handle_request(_direct_request(settings, "GET"), owner=context.user_id)
    return deps.to_response(result)


@router.post("", summary="Issue a presigned upload URL for a new video")
async def create_upload_slot(
    payload: schemas.UploadSlotRequest,
    dispatcher: deps.DispatcherDependency,
    context: deps.AuthDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> JSONResponse:
    envelope = _direct_request(settings, "POST", body=payload.model_dump(exclude_none=True))
    result = await dispatcher.handle_request(envelope, owner=context.user_id)
    return deps.to_response(result)


@router.get("/{key:path}", summary="Fetch one video record by storage key")
async def get_video(
    key: str,
    dispatcher: deps.DispatcherDependency,
    context: deps.AuthDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> JSONResponse:
    result = await dispatcher.handle_request(_direct_request(settings, "GET", key=key), owner=context.user_id)
    return deps.to_response(result)


@router.delete("/{key:path}", summary="Delete the storage object and its record")
async def delete_video(
    key: str,
    dispatcher: deps.DispatcherDependency,
    context: deps.AuthDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> JSONResponse:
    result = await dispatcher.handle_request(_direct_request(settings, "DELETE", key=key), owner=context.user_id)
    return deps.to_response(result)


__all__ = ["router"]
